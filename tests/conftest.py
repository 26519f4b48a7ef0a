"""Shared pytest fixtures for store, cache, service, guard and API tests.

Redis is replaced by ``fakeredis`` and PostgreSQL by a temporary SQLite file
(``aiosqlite``), which also carries the click-count trigger.
"""

import datetime
import logging
from collections.abc import AsyncGenerator
from types import SimpleNamespace

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from urlshortener.analytics import AnalyticsRecorder
from urlshortener.config import Settings
from urlshortener.database import Base, get_db
from urlshortener.dependencies import get_service_manager
from urlshortener.guard import RateAbuseGuard
from urlshortener.main import app
from urlshortener.redis import Cache
from urlshortener.service import ResolutionService
from urlshortener.store import URLStore


class FakeClock:
    """Deterministic UTC clock that tests advance by hand."""

    def __init__(self, start: datetime.datetime):
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += datetime.timedelta(seconds=seconds)


@pytest.fixture
def settings() -> Settings:
    return Settings(CACHE_TIMEOUT_SECONDS=1.0, DB_TIMEOUT_SECONDS=5.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.datetime(2026, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc))


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'urlshortener.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cache(redis_client, settings) -> Cache:
    return Cache(redis_client, settings)


@pytest.fixture
def store(db_session, settings) -> URLStore:
    return URLStore(db_session, settings)


@pytest.fixture
def recorder(session_factory, settings) -> AnalyticsRecorder:
    return AnalyticsRecorder(session_factory, settings)


@pytest.fixture
def service(store, cache, recorder, settings, clock) -> ResolutionService:
    return ResolutionService(store, cache, recorder=recorder, settings=settings, clock=clock)


@pytest.fixture
def guard(cache, settings, clock) -> RateAbuseGuard:
    return RateAbuseGuard(cache, settings, clock=clock)


@pytest.fixture
def manager(cache, recorder, settings, clock) -> SimpleNamespace:
    return SimpleNamespace(
        settings=settings,
        logger=logging.getLogger("urlshortener"),
        cache=cache,
        recorder=recorder,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(session_factory, manager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_service_manager() -> SimpleNamespace:
        return manager

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
