"""Shared fixtures: in-memory database, caches, lifecycle service and HTTP client."""

from __future__ import annotations

import os

# Must be set before config.settings is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_FORMAT"] = "console"
os.environ["LOG_LEVEL"] = "WARNING"

from collections.abc import AsyncIterator
from dataclasses import dataclass

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.db.session import build_session_factory, create_engine_for_url, create_tables
from src.db.tables import UserRecord
from src.middleware.auth import create_access_token
from src.models.enums import UserRole
from src.services.cache import CacheManager
from src.services.grievance_cache import DraftFormCache, GrievanceListCache
from src.services.grievance_lifecycle import GrievanceLifecycleService
from src.services.grievance_store import GrievanceFields
from src.services.tracking_code import TrackingCodeAllocator


@dataclass(frozen=True)
class SeededUsers:
    citizen: str
    neighbour: str
    admin: str


async def _seed_users(session_factory: async_sessionmaker[AsyncSession]) -> SeededUsers:
    async with session_factory() as session, session.begin():
        citizen = UserRecord(name="Asha Verma", email="asha@example.org", role=UserRole.USER)
        neighbour = UserRecord(name="Ravi Kumar", email="ravi@example.org", role=UserRole.USER)
        admin = UserRecord(name="Ward Office", email="admin@example.org", role=UserRole.ADMIN)
        session.add_all([citizen, neighbour, admin])
        await session.flush()
        return SeededUsers(citizen=citizen.id, neighbour=neighbour.id, admin=admin.id)


@pytest.fixture
def make_fields():
    """Factory for valid submission fields; keyword arguments override."""

    def _make(**overrides: object) -> GrievanceFields:
        data: dict = {
            "title": "Pothole on Main St",
            "description": "Large pothole",
            "category": "potholes",
            "location": "Main St",
        }
        data.update(overrides)
        return GrievanceFields(**data)

    return _make


# -----------------------------------------------------------------------
# Service-level fixtures
# -----------------------------------------------------------------------


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def users(session_factory: async_sessionmaker[AsyncSession]) -> SeededUsers:
    return await _seed_users(session_factory)


@pytest.fixture
def cache() -> CacheManager:
    return CacheManager(redis_url=None, namespace="test:")


@pytest.fixture
def list_cache() -> GrievanceListCache:
    # A single process and a single service, so the local LRU behaves like a shared Redis.
    return GrievanceListCache(CacheManager(redis_url=None, namespace="test:"), ttl_seconds=60)


class FlakyRedis:
    """In-process stand-in for the Redis backend that can be switched off."""

    def __init__(self) -> None:
        self.up = True
        self.data: dict[str, bytes] = {}

    def _check(self) -> None:
        if not self.up:
            raise ConnectionError("redis is down")

    async def ping(self) -> bool:
        return self.up

    async def get(self, key: str) -> bytes | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        self._check()
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self._check()
        self.data.pop(key, None)

    async def close(self) -> None:
        pass


@pytest.fixture
def flaky_redis() -> FlakyRedis:
    return FlakyRedis()


@pytest.fixture
def make_cache_manager(flaky_redis: FlakyRedis):
    """Factory for managers backed by ``flaky_redis``; Redis is re-probed on every call."""

    def _make(*, inmemory_fallback: bool) -> CacheManager:
        manager = CacheManager(
            redis_url=None,
            namespace="test:",
            inmemory_fallback=inmemory_fallback,
            reprobe_seconds=0,
        )
        manager._redis = flaky_redis
        return manager

    return _make


@pytest.fixture
def drafts(cache: CacheManager) -> DraftFormCache:
    return DraftFormCache(cache, ttl_seconds=60)


@pytest.fixture
def lifecycle(
    session_factory: async_sessionmaker[AsyncSession],
    list_cache: GrievanceListCache,
    drafts: DraftFormCache,
) -> GrievanceLifecycleService:
    return GrievanceLifecycleService(
        session_factory=session_factory,
        allocator=TrackingCodeAllocator(max_attempts=20),
        list_cache=list_cache,
        drafts=drafts,
        max_page_size=50,
    )


# -----------------------------------------------------------------------
# HTTP fixtures
# -----------------------------------------------------------------------


@dataclass(frozen=True)
class ApiContext:
    client: AsyncClient
    users: SeededUsers

    def auth(self, user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
async def api() -> AsyncIterator[ApiContext]:
    """ASGI client with the real lifespan (fresh in-memory DB per test)."""
    from src.main import app

    async with app.router.lifespan_context(app):
        seeded = await _seed_users(app.state.session_factory)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield ApiContext(client=client, users=seeded)
