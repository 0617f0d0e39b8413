import pytest
from fastapi.testclient import TestClient

from bizdata.api import create_app
from bizdata.auth import AuthService
from bizdata.config import Settings
from bizdata.database import create_db_engine, create_session_factory, init_db
from bizdata.models.user import ROLE_ADMIN
from bizdata.store import SqlAlchemyStore

TEST_SECRET = "test-signing-secret-0123456789abcdef"


def make_settings(**overrides) -> Settings:
    values = {"database_url": "sqlite://", "jwt_secret": TEST_SECRET}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    """Provide an isolated in-memory database for each test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield SqlAlchemyStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def auth(store, settings):
    return AuthService(store, settings)


@pytest.fixture
def client(settings, store):
    return TestClient(create_app(settings, store))


@pytest.fixture
def admin(auth):
    return auth.create_user("admin@example.com", "adminpass", "Admin", role=ROLE_ADMIN)


@pytest.fixture
def admin_token(auth, admin):
    return auth.login("admin@example.com", "adminpass").token


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
