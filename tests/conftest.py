"""Shared pytest fixtures for API, database, and cache tests.

Every test gets its own SQLite database file; Redis is an ``AsyncMock`` that
always misses, so lookups exercise the database path.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EVENT_SINK"] = "database"

from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.database import Base, build_engine, get_db
from app.dependencies import get_cache, get_event_recorder
from app.main import app
from app.recorder import DatabaseEventSink, EventRecorder
from app.registry import LinkRegistry

OWNER = "alice"
OTHER_OWNER = "bob"


@pytest.fixture
def owner_headers() -> dict[str, str]:
    return {"X-Principal-Id": OWNER}


@pytest.fixture
def other_headers() -> dict[str, str]:
    return {"X-Principal-Id": OTHER_OWNER}


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortlinks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Redis client that always misses."""
    redis_client = AsyncMock(spec=redis.Redis)
    redis_client.get = AsyncMock(return_value=None)
    redis_client.setex = AsyncMock(return_value=True)
    redis_client.delete = AsyncMock(return_value=1)
    redis_client.ping = AsyncMock(return_value=True)
    return redis_client


@pytest.fixture
def registry(db_session: AsyncSession) -> LinkRegistry:
    return LinkRegistry(db_session)


@pytest_asyncio.fixture(scope="function")
async def recorder(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[EventRecorder, None]:
    event_recorder = EventRecorder(DatabaseEventSink(session_factory))
    yield event_recorder
    await event_recorder.stop()


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    mock_redis: AsyncMock,
    recorder: EventRecorder,
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_cache() -> redis.Redis:
        return mock_redis

    async def override_get_event_recorder() -> EventRecorder:
        return recorder

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = override_get_cache
    app.dependency_overrides[get_event_recorder] = override_get_event_recorder

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
