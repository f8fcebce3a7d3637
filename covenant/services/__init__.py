"""Database engine and session factory construction.

No module-level connection is created here: callers build a session factory
from settings and inject it into the engine facade or the services.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from covenant.models import Base
from covenant.services.config import EngineSettings


def create_engine_from_settings(settings: EngineSettings) -> AsyncEngine:
    """Create the async engine for the configured database URL.

    Store calls are bounded at the driver: SQLite lock waits by the connect
    timeout, asyncpg statements by command_timeout, pool checkouts by
    pool_timeout.
    """
    url = settings.database_url
    timeout = settings.store_timeout_seconds
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
        if ":memory:" in url:
            # In-memory databases live on one connection
            return create_async_engine(url, connect_args=connect_args, poolclass=StaticPool)
        return create_async_engine(url, connect_args=connect_args)

    connect_args = {"command_timeout": timeout} if "+asyncpg" in url else {}
    return create_async_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_timeout=timeout,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory injected into each unit of work."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create every table registered on Base (development and tests)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "create_engine_from_settings",
    "create_session_factory",
    "create_all_tables",
]
