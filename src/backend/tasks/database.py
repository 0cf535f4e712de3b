"""
Database access for Celery tasks.

Creates a fresh engine per task run: asyncpg connections are bound to the
event loop they were created on, and every task run gets a new event loop,
so the application's shared engine cannot be reused here.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from core.config import settings
from core.database import build_engine

logger = logging.getLogger(__name__)


def get_task_session_factory() -> Tuple[async_sessionmaker, AsyncEngine]:
    """
    Create a fresh engine and session factory for a Celery task.

    Returns:
        (async_sessionmaker, engine); the caller must dispose the engine
    """
    # Small pool: a task run holds at most a couple of connections
    overrides = {"pool_size": 2, "max_overflow": 0} if settings.database.is_postgres else {}
    engine = build_engine(**overrides)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return session_factory, engine


@asynccontextmanager
async def get_celery_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for one task run; commits on success, rolls back on error.

    Usage:
        async with get_celery_session() as session:
            await DiagnosticSessionRepository.cleanup_old_sessions(session)
    """
    session_factory, engine = get_task_session_factory()
    session: AsyncSession = session_factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(f"Database error in Celery task: {e}")
        raise
    finally:
        await session.close()
        await engine.dispose()


@asynccontextmanager
async def get_celery_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh engine for maintenance work that needs its own connections."""
    _, engine = get_task_session_factory()
    try:
        yield engine
    finally:
        await engine.dispose()
