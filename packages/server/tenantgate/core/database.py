"""
Database engine and session management.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from tenantgate.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (development and tests only; use migrations in production)."""
    import tenantgate.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def set_local_timeouts(session: AsyncSession, statement_timeout_ms: int) -> None:
    """Bound lock waits and statement time for the current transaction.

    PostgreSQL only. Other dialects rely on their own busy timeouts.
    """
    if session.bind.dialect.name != "postgresql":
        return
    ms = int(statement_timeout_ms)
    await session.execute(text(f"SET LOCAL statement_timeout = {ms}"))
    await session.execute(text(f"SET LOCAL lock_timeout = {ms}"))
