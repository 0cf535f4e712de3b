"""
Celery application configuration for background maintenance.

Provides the shared Celery instance configured with the Redis broker, the
maintenance queue, the beat schedule of the session cleanup sweep and logging
signal handlers for the ANT Support data layer.
"""

import logging
from celery import Celery
from celery.schedules import crontab
from celery.signals import task_failure, task_postrun, task_prerun, worker_process_init
from kombu import Exchange, Queue

from core.config import settings

# Create Celery instance
celery_app = Celery(
    "ant_support",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
)

# ============================================================================
# CELERY CONFIGURATION
# ============================================================================

celery_app.conf.update(
    # Timezone Settings
    timezone=settings.celery.timezone,
    enable_utc=settings.celery.enable_utc,

    # Task Serialization
    task_serializer=settings.celery.task_serializer,
    accept_content=settings.celery.accept_content,
    result_serializer=settings.celery.result_serializer,

    # Result Backend Settings
    result_expires=86400,  # Maintenance reports are kept for a day

    # Task Execution Settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=settings.celery.task_track_started,
    task_time_limit=settings.celery.task_time_limit,
    task_soft_time_limit=settings.celery.task_soft_time_limit,

    # Worker Settings
    worker_prefetch_multiplier=settings.celery.worker_prefetch_multiplier,
    worker_max_tasks_per_child=settings.celery.worker_max_tasks_per_child,

    # Broker Settings
    broker_connection_retry_on_startup=True,

    # Monitoring & Events
    task_send_sent_event=True,
    worker_send_task_events=True,

    # Task Routing
    task_routes={
        "tasks.maintenance_tasks.*": {"queue": "maintenance_queue"},
    },

    # Queue Definitions
    task_queues=(
        Queue(
            "maintenance_queue",
            Exchange("maintenance_queue"),
            routing_key="maintenance_queue",
        ),
        Queue(
            "celery",  # Default queue
            Exchange("celery"),
            routing_key="celery",
        ),
    ),

    # Periodic Tasks
    beat_schedule={
        "cleanup-old-diagnostic-sessions": {
            "task": "tasks.maintenance_tasks.cleanup_old_sessions",
            "schedule": crontab(hour=settings.celery.session_cleanup_hour, minute=0),
        },
    },
)

# ============================================================================
# SIGNAL HANDLERS
# ============================================================================

logger = logging.getLogger(__name__)


@task_prerun.connect
def task_prerun_handler(task_id, task, args, kwargs, **extra):
    """Log when task starts."""
    logger.info(f"Task {task.name}[{task_id}] started")


@task_postrun.connect
def task_postrun_handler(task_id, task, args, kwargs, retval, **extra):
    """Log when task completes."""
    logger.info(f"Task {task.name}[{task_id}] finished")


@task_failure.connect
def task_failure_handler(task_id, exception, args, kwargs, traceback, einfo, **extra):
    """Log when task fails."""
    logger.error(
        f"Task {task_id} failed with exception: {exception}\n"
        f"Traceback: {traceback}"
    )


@worker_process_init.connect
def on_worker_process_init(**kwargs):
    """
    Reset logging after the worker process is forked.

    Tasks open their own engine per run (see tasks.database), so only the
    queue listener of the parent needs replacing.
    """
    from core.logging_config import setup_logging_from_settings

    setup_logging_from_settings()
    logger.info("Worker process initialized")


# ============================================================================
# MANUAL TASK IMPORTS (to register tasks with Celery)
# ============================================================================
# Imported last so the configuration above is complete before registration
from tasks import maintenance_tasks  # noqa: F401, E402
