"""Pytest configuration and fixtures for Mostrador tests.

Store-backed tests run against a throwaway SQLite file (aiosqlite) created
per test, so no Postgres is needed. The app under test gets its
PermissionsService swapped through `dependency_overrides`.
"""

from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.jwt import create_access_token
from app.database import Base
from app.main import app
from app.middleware.exceptions import StoreUnavailableError
from app.models.permission_override import UserPermissionOverride
from app.models.user import User, UserRole
from app.services.override_store import PermissionOverrideStore
from app.services.permissions import PermissionsService, get_permissions_service
from app.utils.cache import OverrideCache

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


# ── Test doubles ─────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingStore(PermissionOverrideStore):
    """Real store that counts override reads."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.find_calls = 0

    async def find_many(self, user_id, tenant_id):
        self.find_calls += 1
        return await super().find_many(user_id, tenant_id)


class FailingStore(PermissionOverrideStore):
    """Store whose backend is down for every operation."""

    def __init__(self):
        super().__init__(session_factory=None)  # type: ignore[arg-type]

    async def find_many(self, user_id, tenant_id):
        raise StoreUnavailableError()

    async def upsert_many(self, **kwargs):
        raise StoreUnavailableError()

    async def delete_many(self, **kwargs):
        raise StoreUnavailableError()

    async def get_user(self, user_id, tenant_id):
        raise StoreUnavailableError()

    async def get_user_warehouse(self, user_id, tenant_id):
        raise StoreUnavailableError()


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> OverrideCache:
    return OverrideCache(ttl=300, clock=clock)


@pytest.fixture
def store(session_factory) -> CountingStore:
    return CountingStore(session_factory)


@pytest.fixture
def service(store, cache) -> PermissionsService:
    return PermissionsService(store=store, cache=cache)


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def make_user(session_factory) -> Callable:
    """Factory: insert a user and return it."""
    counter = 0

    async def _make(
        role: UserRole = UserRole.EMPLOYEE,
        tenant_id: str = TENANT_A,
        warehouse_id: str | None = None,
    ) -> User:
        nonlocal counter
        counter += 1
        user = User(
            tenant_id=tenant_id,
            email=f"user{counter}-{tenant_id}@example.com",
            full_name=f"Test User {counter}",
            role=role,
            is_active=True,
            warehouse_id=warehouse_id,
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
def insert_raw_override(session_factory) -> Callable:
    """Write an override row directly, bypassing the service and its cache."""

    async def _insert(user_id: str, tenant_id: str, permission: str, granted: bool) -> None:
        async with session_factory() as session:
            session.add(UserPermissionOverride(
                user_id=user_id,
                tenant_id=tenant_id,
                permission=permission,
                granted=granted,
            ))
            await session.commit()

    return _insert


# ── HTTP ─────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(service) -> AsyncGenerator[AsyncClient, None]:
    """Client for the real app, wired to the test PermissionsService."""
    app.dependency_overrides[get_permissions_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def token_for(user_id: str, role: UserRole, tenant_id: str | None = TENANT_A) -> str:
    return create_access_token(user_id=user_id, role=role.value, tenant_id=tenant_id)


def auth_headers(user: User) -> dict:
    """Authorization headers carrying a token for `user`."""
    return {"Authorization": f"Bearer {token_for(user.id, user.role, user.tenant_id)}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
