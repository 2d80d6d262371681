"""Test fixtures: an app per test around a fresh in-memory database.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite database (aiosqlite). StaticPool
   keeps a single connection alive, so every session in the test sees
   the same database.
2. The app is built by create_app() from explicit test Settings, and get_db
   is overridden to hand out sessions bound to that database.
3. bcrypt runs with 4 rounds so hashing does not dominate the test run.

Real auth is exercised end to end: helpers create users through the
service layer and sign real tokens with the app's TokenService.
"""

import os

# Settings are read at import time by ekonsulta.main; configure first.
os.environ.setdefault("EKONSULTA_JWT_SECRET", "test-secret-key-for-the-ekonsulta-suite")
os.environ.setdefault("EKONSULTA_BCRYPT_ROUNDS", "4")
os.environ.setdefault("EKONSULTA_DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ekonsulta.config import Settings
from ekonsulta.db.engine import get_db
from ekonsulta.db.models import Base, Role
from ekonsulta.main import create_app
from ekonsulta.schemas.user import UserCreate
from ekonsulta.services.user_service import UserService

TEST_DB_URL = "sqlite+aiosqlite://"
TEST_SECRET = "test-secret-key-for-the-ekonsulta-suite"
PASSWORD = "secret123"


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret": TEST_SECRET,
        "database_url": TEST_DB_URL,
        "bcrypt_rounds": 4,
        "environment": "test",
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def user_payload(username: str = "a1", **overrides) -> dict:
    """Valid registration body; override any field."""
    body = {
        "name": f"User {username}",
        "username": username,
        "email": f"{username}@example.com",
        "password": PASSWORD,
    }
    body.update(overrides)
    return body


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def settings():
    return make_settings()


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def app(settings, session_factory):
    """The application with get_db bound to the per-test database."""
    app = create_app(settings)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def make_user(app, session_factory):
    """Factory: create a user directly and return (user, token).

    Learn: Going through UserService instead of POST /auth/register lets a
    test create administrators and employees without depending on the
    registration endpoint's role handling.
    """

    async def _make_user(username: str, role: Role = Role.CLIENT, **overrides):
        async with session_factory() as session:
            svc = UserService(session, bcrypt_rounds=4)
            user = await svc.create(UserCreate(**user_payload(username, role=role, **overrides)))
        return user, app.state.tokens.issue(str(user.id))

    return _make_user


@pytest_asyncio.fixture()
async def admin_headers(make_user):
    _, token = await make_user("root_admin", Role.ADMINISTRATOR)
    return bearer(token)
