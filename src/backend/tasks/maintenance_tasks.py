"""
Maintenance tasks for the diagnostic data layer.

Each Celery task is a thin synchronous wrapper around an async implementation:
1. Obtains a database session (or engine) via tasks.database
2. Calls the repository or optimizer method
3. Returns a JSON-serializable report

Queue: maintenance_queue
Purpose: session cleanup sweep (daily via beat), TV interface optimization
and oversized screenshot reports (triggered manually)
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from celery_app import celery_app
from core.config import settings
from repositories.diagnostic_session_repository import DiagnosticSessionRepository
from services.tv_interface_optimizer import TVInterfaceOptimizer
from tasks.base import BaseTask
from tasks.database import get_celery_engine, get_celery_session

logger = logging.getLogger(__name__)


def run_async(coro):
    """
    Run a coroutine from a synchronous Celery task.

    asyncio.run() creates a new loop, runs the coroutine and closes the loop,
    which matches the fresh engine created per task run.
    """
    return asyncio.run(coro)


async def cleanup_old_sessions_task(
    days_old: Optional[int] = None,
    abandoned_hours: Optional[int] = None,
) -> Dict[str, int]:
    """
    Delete old completed sessions and close abandoned ones.

    Args:
        days_old: Retention of completed sessions in days
            (default: DIAGNOSTICS_SESSION_RETENTION_DAYS)
        abandoned_hours: Age after which an active session counts as abandoned
            (default: DIAGNOSTICS_ABANDONED_SESSION_HOURS)

    Returns:
        dict: {"deleted_sessions": int, "abandoned_sessions": int}
    """
    async with get_celery_session() as db:
        result = await DiagnosticSessionRepository.cleanup_old_sessions(
            db, days_old=days_old, abandoned_hours=abandoned_hours
        )

    logger.info(
        f"Session cleanup completed: {result['deleted_sessions']} deleted, "
        f"{result['abandoned_sessions']} closed as abandoned"
    )
    return result


async def optimize_tv_interfaces_task() -> Dict[str, Any]:
    """
    Run the TV interface optimizer and return its status report.

    Returns:
        dict: {"optimization": {...}, "status": {...}}
    """
    async with get_celery_engine() as engine:
        optimizer = TVInterfaceOptimizer(bind=engine)
        optimization = await optimizer.optimize_database()
        status = await optimizer.get_optimization_status()

    return {"optimization": optimization.to_dict(), "status": status}


async def report_large_screenshots_task(max_size_mb: Optional[int] = None) -> Dict[str, Any]:
    """List screenshots above ``max_size_mb`` (default: DIAGNOSTICS_LARGE_SCREENSHOT_MB)."""
    if max_size_mb is None:
        max_size_mb = settings.diagnostics.large_screenshot_mb
    async with get_celery_engine() as engine:
        return await TVInterfaceOptimizer(bind=engine).cleanup_large_screenshots(max_size_mb)


@celery_app.task(
    base=BaseTask,
    name="tasks.maintenance_tasks.cleanup_old_sessions",
    queue="maintenance_queue",
)
def cleanup_old_sessions(days_old: Optional[int] = None, abandoned_hours: Optional[int] = None):
    """Daily sweep of diagnostic sessions (scheduled by Celery beat)."""
    return run_async(cleanup_old_sessions_task(days_old, abandoned_hours))


@celery_app.task(
    base=BaseTask,
    name="tasks.maintenance_tasks.optimize_tv_interfaces",
    queue="maintenance_queue",
)
def optimize_tv_interfaces():
    """Create TV interface indexes and refresh statistics."""
    return run_async(optimize_tv_interfaces_task())


@celery_app.task(
    base=BaseTask,
    name="tasks.maintenance_tasks.report_large_screenshots",
    queue="maintenance_queue",
)
def report_large_screenshots(max_size_mb: Optional[int] = None):
    """Report oversized inline screenshots."""
    return run_async(report_large_screenshots_task(max_size_mb))
