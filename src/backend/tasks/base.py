"""
Base task class with common functionality.

Provides error handling, logging, and retry logic for maintenance tasks.
"""

from celery import Task
from celery.utils.log import get_task_logger
from sqlalchemy.exc import DBAPIError, OperationalError

logger = get_task_logger(__name__)


class BaseTask(Task):
    """
    Base class for maintenance tasks.

    Only connection level database errors are retried; domain errors
    (ValueError) and programming errors fail immediately.
    """

    # Retry settings
    autoretry_for = (OperationalError, DBAPIError, ConnectionError)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Called when the task fails after all retries."""
        logger.error(
            f"Task {self.name}[{task_id}] failed permanently: {exc}\n"
            f"Args: {args}\n"
            f"Kwargs: {kwargs}"
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        """Called when the task is retried."""
        logger.warning(
            f"Task {self.name}[{task_id}] retrying due to: {exc} "
            f"(retry {self.request.retries}/{self.max_retries})"
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {self.name}[{task_id}] succeeded: {retval}")
        super().on_success(retval, task_id, args, kwargs)
