"""Password hashing, bearer tokens and session lifecycle."""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from prometheus_client import Counter
from starlette.requests import cookie_parser

from .config import Settings
from .database import utcnow
from .exceptions import (
    AuthenticationError,
    BizDataError,
    ConfigurationError,
    ConflictError,
    ValidationError,
)
from .models.user import ROLE_USER, ROLES, User
from .store import RecordStore

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
ACCOUNT_DEACTIVATED = "Account is deactivated"
EMAIL_TAKEN = "User with this email already exists"
AUTH_COOKIE = "auth-token"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

AUTH_EVENTS = Counter(
    "auth_events_total", "Authentication events by outcome", ["event", "outcome"]
)

_password_hasher = PasswordHasher()
# verified against on unknown emails so every login pays for one hash check
_DUMMY_HASH = _password_hasher.hash(secrets.token_urlsafe(16))


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    email: str
    role: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """A user together with the bearer token issued for the new session."""

    user: User
    token: str


def extract_token(
    headers: Mapping[str, str], cookie_name: str = AUTH_COOKIE
) -> Optional[str]:
    """Return the bearer token from the Authorization header or the auth cookie."""
    lowered = {key.lower(): value for key, value in headers.items()}
    authorization = (lowered.get("authorization") or "").strip()
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
        return parts[1].strip()

    cookie_header = lowered.get("cookie")
    if not cookie_header:
        return None
    return cookie_parser(cookie_header).get(cookie_name) or None


class AuthService:
    """Authenticate users and manage their sessions.

    The service owns no state of its own: every call goes through the
    injected ``RecordStore``, and the token signing secret comes from the
    ``Settings`` passed at construction.
    """

    def __init__(self, store: RecordStore, settings: Settings) -> None:
        if settings.uses_default_secret:
            if settings.is_production:
                raise ConfigurationError(
                    "JWT_SECRET must be set to a private value in production"
                )
            logger.warning(
                "using the built-in JWT secret; set JWT_SECRET before deploying"
            )
        self.store = store
        self.settings = settings
        self.session_ttl = timedelta(days=settings.session_expire_days)

    # passwords

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password with argon2 and a fresh random salt."""
        return _password_hasher.hash(password)

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        """Check a password against a stored hash; mismatches return False."""
        try:
            return _password_hasher.verify(password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    # tokens

    def issue_token(
        self,
        user_id: str,
        email: str,
        role: str,
        expires_in: Optional[timedelta] = None,
    ) -> str:
        """Sign a token for the user, valid for the session TTL by default."""
        now = datetime.now(timezone.utc)
        expires_in = self.session_ttl if expires_in is None else expires_in
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "iat": int(now.timestamp()),
            "exp": now + expires_in,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(
            payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm
        )

    def verify_token(self, token: str) -> Optional[TokenPayload]:
        """Validate signature and expiry, returning the payload or None."""
        try:
            payload = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("rejected expired token")
            return None
        except jwt.PyJWTError:
            logger.debug("rejected invalid token", exc_info=True)
            return None

        email = payload.get("email")
        role = payload.get("role")
        if not email or role not in ROLES:
            return None
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        return TokenPayload(
            user_id=payload["sub"], email=email, role=role, expires_at=expires_at
        )

    # accounts

    def _validate_account_fields(self, email: str, password: str, name: str) -> None:
        if not email or not password or not (name or "").strip():
            raise ValidationError("Email, password, and name are required")
        self._validate_email(email)
        self._validate_password(password)

    @staticmethod
    def _validate_email(email: str) -> None:
        if not EMAIL_RE.match(email):
            raise ValidationError("Invalid email format")

    def _validate_password(self, password: str) -> None:
        minimum = self.settings.min_password_length
        if len(password) < minimum:
            raise ValidationError(
                f"Password must be at least {minimum} characters long"
            )

    def create_user(
        self,
        email: str,
        password: str,
        name: str,
        role: str = ROLE_USER,
        is_active: bool = True,
    ) -> User:
        """Create an account without opening a session for it."""
        self._validate_account_fields(email, password, name)
        if role not in ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(ROLES)}")
        if self.store.get_user_by_email(email):
            raise ConflictError(EMAIL_TAKEN)
        return self.store.create_user(
            email=email,
            password_hash=self.hash_password(password),
            name=name.strip(),
            role=role,
            is_active=is_active,
        )

    def update_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
        name: Optional[str] = None,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[User]:
        """Apply the given changes to an account; None when it does not exist."""
        changes = {}
        if email:
            self._validate_email(email)
            existing = self.store.get_user_by_email(email)
            if existing and existing.id != user_id:
                raise ConflictError(EMAIL_TAKEN)
            changes["email"] = email
        if password:
            self._validate_password(password)
            changes["password_hash"] = self.hash_password(password)
        if name and name.strip():
            changes["name"] = name.strip()
        if role:
            if role not in ROLES:
                raise ValidationError(f"Role must be one of: {', '.join(ROLES)}")
            changes["role"] = role
        if is_active is not None:
            changes["is_active"] = is_active
        return self.store.update_user(user_id, **changes)

    def delete_user(self, user_id: str) -> bool:
        """Delete an account and every session it still holds."""
        if not self.store.delete_user(user_id):
            return False
        removed = self.store.delete_user_sessions(user_id)
        logger.info("deleted user id=%s and %d sessions", user_id, removed)
        return True

    # sessions

    def _open_session(self, user: User) -> AuthResult:
        token = self.issue_token(user.id, user.email, user.role)
        self.store.create_session(
            user_id=user.id, token=token, expires_at=utcnow() + self.session_ttl
        )
        return AuthResult(user=user, token=token)

    def register(self, email: str, password: str, name: str) -> AuthResult:
        """Create a regular account and open its first session."""
        try:
            user = self.create_user(email, password, name)
        except BizDataError:
            AUTH_EVENTS.labels(event="register", outcome="failure").inc()
            raise
        AUTH_EVENTS.labels(event="register", outcome="success").inc()
        logger.info("registered user id=%s", user.id)
        return self._open_session(user)

    def login(self, email: str, password: str) -> AuthResult:
        """Check credentials and open a new session.

        Unknown email and wrong password fail with the same message so the
        response does not reveal which one was wrong.
        """
        user = self.store.get_user_by_email(email)
        if user is None:
            self.verify_password(password, _DUMMY_HASH)
            AUTH_EVENTS.labels(event="login", outcome="failure").inc()
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not user.is_active:
            AUTH_EVENTS.labels(event="login", outcome="inactive").inc()
            raise AuthenticationError(ACCOUNT_DEACTIVATED)
        if not self.verify_password(password, user.password_hash):
            AUTH_EVENTS.labels(event="login", outcome="failure").inc()
            raise AuthenticationError(INVALID_CREDENTIALS)

        AUTH_EVENTS.labels(event="login", outcome="success").inc()
        logger.info("login user id=%s", user.id)
        return self._open_session(user)

    def logout(self, token: str) -> bool:
        """Drop the session for ``token``; succeeds even if none exists."""
        try:
            removed = self.store.delete_session(token)
        except BizDataError:
            logger.exception("logout failed")
            return False
        AUTH_EVENTS.labels(event="logout", outcome="success").inc()
        logger.debug("logout removed_session=%s", removed)
        return True

    def resolve_identity(self, token: Optional[str]) -> Optional[User]:
        """Return the active user behind ``token`` or None.

        Fails closed: a bad signature, a missing or expired session, a
        missing or deactivated user and store failures all yield None.
        """
        if not token:
            return None
        payload = self.verify_token(token)
        if payload is None:
            return None
        try:
            session = self.store.get_session_by_token(token)
            if session is None or session.user_id != payload.user_id:
                return None
            user = self.store.get_user(session.user_id)
        except BizDataError:
            logger.exception("identity resolution failed")
            return None
        if user is None or not user.is_active:
            return None
        return user

    def clean_expired_sessions(self) -> int:
        """Purge expired sessions, returning how many were removed."""
        return self.store.delete_expired_sessions()
