"""Engine and session factory shared by requests, the recorder and the CLI.

Session Ownership
=================
::
    request ──► get_db() ──► URLStore(session) ──► closed with the request
    resolve ──► AnalyticsRecorder ──► async_session() per event
    cron    ──► maintenance.clean_expired_urls() ──► async_session()

The recorder never borrows a request's session: its worker runs after the
redirect response has gone out, when that session is already closed.

``DATABASE_URL`` selects the driver. Production runs PostgreSQL through
asyncpg; the test suite builds its own engine on a temporary SQLite file
(aiosqlite) from the same ``Base.metadata``, trigger included.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from urlshortener.config import get_settings

__all__ = ["Base", "async_session", "engine", "get_db", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

# Records are handed to pydantic after commit, so attributes must stay loaded.
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    """Create tables, indexes and the click-count trigger if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
