"""Shared test fixtures for the jarvault test suite.

Uses an in-memory SQLite database for fast, isolated store and route
tests. The external build backend is replaced by `FakeBackend`, served
through `httpx.MockTransport`, so no test touches the network.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Callable, Union

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from jarvault.artifacts.backend import BackendClient
from jarvault.artifacts.router import get_backend
from jarvault.artifacts.store import ArtifactStore
from jarvault.core.config import Settings, get_settings
from jarvault.db.models import Base
from jarvault.db.session import get_db
from jarvault.main import create_app

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TEST_JWT_SECRET = "test-secret-for-unit-tests"
BACKEND_URL = "http://backend.test"

OWNER_ID = "user-owner-1"
OTHER_USER_ID = "user-other-2"
ADMIN_ID = "user-admin-9"
PLUGIN_NAME = "SuperPlugin"


def _make_jwt(
    sub: str = OWNER_ID,
    *,
    secret: str = TEST_JWT_SECRET,
    audience: str = "authenticated",
    is_admin: bool = False,
    expired: bool = False,
) -> str:
    """Mint a HS256 session JWT the way the auth layer does."""
    now = datetime.now(timezone.utc)
    exp = now - timedelta(hours=1) if expired else now + timedelta(hours=1)
    payload = {
        "sub": sub,
        "aud": audience,
        "exp": exp,
        "iat": now,
    }
    if is_admin:
        payload["is_admin"] = True
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(sub: str = OWNER_ID, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {_make_jwt(sub, **kwargs)}"}


def make_jar(extra: int = 1000) -> bytes:
    """A buffer that passes every integrity check: PK magic + filler."""
    return b"PK\x03\x04" + b"\x01" * extra


# ---------------------------------------------------------------------------
# External backend double
# ---------------------------------------------------------------------------

Handler = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeBackend:
    """Scripted build backend. Unrouted paths answer 404.

    Disabled by default, in which case the app sees an unconfigured
    backend (empty BACKEND_API_URL).
    """

    def __init__(self) -> None:
        self.enabled = False
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def route(self, path: str, handler: Handler) -> None:
        self.enabled = True
        self.routes[path] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request) if callable(handler) else handler

    def client(self) -> BackendClient:
        if not self.enabled:
            return BackendClient("")
        return BackendClient(BACKEND_URL, transport=httpx.MockTransport(self.handle))


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create a fresh async SQLite engine for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session) -> ArtifactStore:
    return ArtifactStore(db_session, timeout=5)


async def seed_artifact(
    db_session: AsyncSession,
    user_id: str = OWNER_ID,
    plugin_name: str = PLUGIN_NAME,
    binary: bytes | None = None,
    **kwargs,
):
    plugin = await ArtifactStore(db_session).put_artifact(
        user_id, plugin_name, binary if binary is not None else make_jar(), **kwargs
    )
    await db_session.commit()
    return plugin


# ---------------------------------------------------------------------------
# App + clients
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret": TEST_JWT_SECRET,
        "database_url": "sqlite+aiosqlite:///:memory:",
        "backend_api_url": "",
        "sentry_dsn": "",
        "develop": False,
        "auto_create_tables": False,
        "debug": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_overrides() -> dict:
    """Per-test Settings overrides; tests redefine or mutate this."""
    return {}


@pytest.fixture
def app(async_engine, fake_backend, settings_overrides):
    """FastAPI app with DB, settings and backend dependencies overridden.

    The SlowAPI limiter keeps in-memory buckets across requests in the
    same process, so they are reset before each test.
    """
    from jarvault.core.limiter import limiter

    limiter.reset()

    test_app = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        session_factory = async_sessionmaker(
            async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_settings] = lambda: make_settings(**settings_overrides)
    test_app.dependency_overrides[get_backend] = fake_backend.client
    return test_app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Client with no Authorization header."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def owner_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=auth_headers(OWNER_ID)
    ) as ac:
        yield ac


@pytest.fixture
async def other_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=auth_headers(OTHER_USER_ID)
    ) as ac:
        yield ac


@pytest.fixture
async def admin_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers=auth_headers(ADMIN_ID, is_admin=True),
    ) as ac:
        yield ac
