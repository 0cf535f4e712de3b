"""
Database engine and session management.
Implements connection pooling and session lifecycle for async operations.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import PendingRollbackError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from .config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str = None, **overrides) -> AsyncEngine:
    """
    Create an async engine configured from settings.

    Pool and driver options are only passed for PostgreSQL URLs; other
    dialects (aiosqlite in tests) use their defaults.
    """
    url = url or settings.database.url
    options = {
        "echo": bool(settings.performance.enable_query_logging or settings.database.echo),
        "future": True,
    }
    if url.startswith("postgresql"):
        options.update(
            pool_pre_ping=True,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_timeout=settings.database.pool_timeout,
            pool_recycle=settings.database.pool_recycle,
            connect_args={
                "server_settings": {
                    "application_name": settings.database.application_name,
                },
                "command_timeout": 60,
                "timeout": 30,
            },
        )
    options.update(overrides)
    return create_async_engine(url, **options)


engine = build_engine()

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Prevent additional queries after commit
    autoflush=False,
    autocommit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session for one unit of work.
    Commits on success, rolls back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            if session.in_transaction():
                try:
                    await session.commit()
                except PendingRollbackError:
                    await session.rollback()
                    raise
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_maintenance_connection(
    bind: AsyncEngine = None,
) -> AsyncGenerator[AsyncConnection, None]:
    """
    Open a connection in AUTOCOMMIT mode.

    ``CREATE INDEX CONCURRENTLY`` and ``ANALYZE`` maintenance statements
    cannot run inside a transaction block.

    Example:
        async with get_maintenance_connection() as conn:
            await conn.execute(text("ANALYZE tv_interfaces"))
    """
    target = bind or engine
    async with target.connect() as conn:
        autocommit_conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        yield autocommit_conn


async def init_db() -> None:
    """
    Create missing tables.

    Production schemas are managed by Alembic; this is used for local
    databases and fresh installs.
    """
    import db  # noqa: F401  registers the tables on SQLModel.metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ensured")


async def close_db() -> None:
    """
    Close database connections.
    Should be called on application shutdown.
    """
    await engine.dispose()
