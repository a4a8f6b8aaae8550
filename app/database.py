"""Async engine and session handling for the short link service.

PostgreSQL through asyncpg is the deployment backend; SQLite through
aiosqlite serves local runs and the test suite.

Session Ownership
=================
::
    request handlers ── get_db() ──► one AsyncSession per request
    EventRecorder    ── async_session() ──► short-lived session per batch
    ingestion worker ── async_session() ──► short-lived session per batch

Key Behaviours
===============
- ``expire_on_commit=False``: links returned after a commit stay readable
  without another round trip.
- PostgreSQL gets a sized, pre-pinged pool; SQLite keeps the dialect defaults.
- ``init_db()`` creates both tables on startup; ``close_db()`` disposes the engine.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

__all__ = ["Base", "async_session", "build_engine", "get_db", "init_db", "close_db"]

settings = get_settings()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
