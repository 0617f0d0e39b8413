import logging
from datetime import timedelta

import jwt
import pytest

from bizdata import auth as auth_module
from bizdata.auth import AuthService, extract_token
from bizdata.config import DEFAULT_JWT_SECRET
from bizdata.database import utcnow
from bizdata.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    ValidationError,
)

from conftest import make_settings


def test_register_then_login_resolves_identity(auth):
    registered = auth.register("a@x.com", "secret1", "Alice")
    assert registered.user.role == "user"
    assert registered.user.is_active is True
    assert auth.resolve_identity(registered.token).id == registered.user.id

    logged_in = auth.login("a@x.com", "secret1")
    assert logged_in.user.id == registered.user.id
    assert auth.resolve_identity(logged_in.token).email == "a@x.com"


def test_wrong_password_and_unknown_email_share_message(auth):
    auth.register("a@x.com", "secret1", "Alice")

    with pytest.raises(AuthenticationError) as wrong_password:
        auth.login("a@x.com", "wrong")
    with pytest.raises(AuthenticationError) as unknown_email:
        auth.login("nobody@x.com", "x")

    assert wrong_password.value.message == "Invalid credentials"
    assert unknown_email.value.message == wrong_password.value.message


def test_unknown_email_still_checks_a_password_hash(auth, monkeypatch):
    checked = []

    def fake_verify(password, password_hash):
        checked.append((password, password_hash))
        return False

    monkeypatch.setattr(AuthService, "verify_password", staticmethod(fake_verify))
    with pytest.raises(AuthenticationError, match="Invalid credentials"):
        auth.login("nobody@x.com", "guess")

    assert checked == [("guess", auth_module._DUMMY_HASH)]


def test_password_hash_is_salted_and_verifiable(auth):
    first = auth.hash_password("secret1")
    second = auth.hash_password("secret1")
    assert first != second
    assert "secret1" not in first
    assert auth.verify_password("secret1", first)
    assert not auth.verify_password("secret2", first)
    assert not auth.verify_password("secret1", "not-a-hash")


def test_token_round_trip(auth):
    token = auth.issue_token("u1", "a@x.com", "admin")
    payload = auth.verify_token(token)
    assert payload.user_id == "u1"
    assert payload.email == "a@x.com"
    assert payload.role == "admin"


def test_expired_token_is_rejected(auth):
    token = auth.issue_token("u1", "a@x.com", "user", expires_in=timedelta(seconds=-5))
    assert auth.verify_token(token) is None


def test_token_signed_with_another_key_is_rejected(auth):
    forged = jwt.encode(
        {"sub": "u1", "email": "a@x.com", "role": "admin", "exp": 4102444800},
        "some-other-signing-secret-0123456789",
        algorithm="HS256",
    )
    assert auth.verify_token(forged) is None
    assert auth.verify_token("not.a.token") is None


def test_tokens_issued_together_are_distinct(auth):
    auth.register("a@x.com", "secret1", "Alice")
    first = auth.login("a@x.com", "secret1").token
    second = auth.login("a@x.com", "secret1").token
    assert first != second
    assert auth.resolve_identity(first) is not None
    assert auth.resolve_identity(second) is not None


def test_logout_invalidates_session(auth):
    token = auth.register("a@x.com", "secret1", "Alice").token
    assert auth.logout(token) is True
    assert auth.resolve_identity(token) is None
    # idempotent
    assert auth.logout(token) is True


def test_valid_token_without_session_is_rejected(auth):
    user = auth.create_user("a@x.com", "secret1", "Alice")
    token = auth.issue_token(user.id, user.email, user.role)
    assert auth.resolve_identity(token) is None
    assert auth.resolve_identity(None) is None


def test_expired_session_is_rejected(auth, store):
    user = auth.create_user("a@x.com", "secret1", "Alice")
    token = auth.issue_token(user.id, user.email, user.role)
    store.create_session(user.id, token, utcnow() - timedelta(seconds=1))

    assert auth.verify_token(token) is not None
    assert auth.resolve_identity(token) is None


def test_session_bound_to_another_user_is_rejected(auth, store):
    alice = auth.create_user("a@x.com", "secret1", "Alice")
    bob = auth.create_user("b@x.com", "secret1", "Bob")
    token = auth.issue_token(alice.id, alice.email, alice.role)
    store.create_session(bob.id, token, utcnow() + timedelta(days=1))

    assert auth.resolve_identity(token) is None


def test_deactivated_account(auth):
    result = auth.register("a@x.com", "secret1", "Alice")
    auth.update_user(result.user.id, is_active=False)

    assert auth.resolve_identity(result.token) is None
    with pytest.raises(AuthenticationError, match="Account is deactivated"):
        auth.login("a@x.com", "secret1")


def test_deleted_account_loses_sessions(auth, store):
    result = auth.register("a@x.com", "secret1", "Alice")
    assert auth.delete_user(result.user.id) is True
    assert store.get_session_by_token(result.token) is None
    assert auth.resolve_identity(result.token) is None
    assert auth.delete_user(result.user.id) is False


def test_register_rejects_duplicates_and_bad_input(auth):
    auth.register("a@x.com", "secret1", "Alice")
    with pytest.raises(ConflictError, match="already exists"):
        auth.register("a@x.com", "secret2", "Other")
    with pytest.raises(ValidationError, match="Invalid email format"):
        auth.register("not-an-email", "secret1", "Bob")
    with pytest.raises(ValidationError, match="at least 6 characters"):
        auth.register("b@x.com", "short", "Bob")
    with pytest.raises(ValidationError, match="required"):
        auth.register("b@x.com", "secret1", "  ")


def test_email_is_case_sensitive(auth):
    auth.register("a@x.com", "secret1", "Alice")
    with pytest.raises(AuthenticationError):
        auth.login("A@x.com", "secret1")


def test_update_user_rejects_taken_email(auth):
    auth.register("a@x.com", "secret1", "Alice")
    bob = auth.register("b@x.com", "secret1", "Bob").user
    with pytest.raises(ConflictError):
        auth.update_user(bob.id, email="a@x.com")
    assert auth.update_user(bob.id, email="b@x.com").email == "b@x.com"


def test_clean_expired_sessions(auth, store):
    user = auth.register("a@x.com", "secret1", "Alice").user
    store.create_session(user.id, "stale-token", utcnow() - timedelta(days=1))
    assert auth.clean_expired_sessions() == 1
    assert auth.clean_expired_sessions() == 0


def test_extract_token_prefers_bearer_header():
    headers = {"Authorization": "Bearer header-token", "Cookie": "auth-token=cookie-token"}
    assert extract_token(headers) == "header-token"


def test_extract_token_falls_back_to_cookie():
    assert extract_token({"cookie": "theme=dark; auth-token=cookie-token"}) == "cookie-token"
    assert extract_token({"Authorization": "Basic abc"}) is None
    assert extract_token({}) is None


def test_default_secret_is_rejected_in_production(store):
    settings = make_settings(jwt_secret=DEFAULT_JWT_SECRET, environment="production")
    with pytest.raises(ConfigurationError):
        AuthService(store, settings)


def test_default_secret_warns_outside_production(store, caplog):
    with caplog.at_level(logging.WARNING, logger="bizdata.auth"):
        AuthService(store, make_settings(jwt_secret=DEFAULT_JWT_SECRET))
    assert "JWT_SECRET" in caplog.text
