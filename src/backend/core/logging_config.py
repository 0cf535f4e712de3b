"""
Logging configuration for the ANT Support backend.
Provides structured logging with different levels and formats.

File handlers run behind a QueueHandler/QueueListener pair so that log writes
never block the event loop.
"""

import atexit
import logging
import logging.handlers
import queue
import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


# Global queue listener for cleanup
_queue_listener: Optional[logging.handlers.QueueListener] = None

SESSION_LOGGER_PREFIX = "diagnostics.session"
DATABASE_LOGGER_PREFIXES = ("repositories", "services", "core.decorators", "core.database")


class LogConfig(BaseModel):
    """Logging configuration settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_file_logging: bool = True
    log_dir: str = "logs"
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    enable_console: bool = True
    query_logging: bool = False


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    grey = "\x1b[38;21m"
    yellow = "\x1b[33;21m"
    red = "\x1b[31;21m"
    bold_red = "\x1b[31;1m"
    blue = "\x1b[34;21m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: grey,
        logging.INFO: blue,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def format(self, record):
        # Color a copy so that queued file handlers get the plain levelname
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, self.grey)
        record.levelname = f"{color}{record.levelname}{self.reset}"
        return f"{super().format(record)}{self.reset}"


class PrefixFilter(logging.Filter):
    """Pass records whose logger name starts with one of the given prefixes."""

    def __init__(self, *prefixes: str):
        super().__init__()
        self.prefixes = prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        return any(
            record.name == prefix or record.name.startswith(f"{prefix}.")
            for prefix in self.prefixes
        )


def _rotating_handler(config: LogConfig, filename: str, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        Path(config.log_dir) / filename,
        maxBytes=config.max_file_size,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, config.level.upper()))
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """Setup application logging.

    - console: colored, direct to stdout
    - app.log: everything
    - sessions.log: diagnostic session lifecycle only
    - database.log: repositories, services and database plumbing
    """
    global _queue_listener

    if config is None:
        config = LogConfig()

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None

    if config.enable_file_logging:
        Path(config.log_dir).mkdir(parents=True, exist_ok=True)

    level = getattr(logging, config.level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter(
                fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
                datefmt=config.date_format,
            )
        )
        root_logger.addHandler(console_handler)

    file_handlers = []

    if config.enable_file_logging:
        file_formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt=config.date_format,
        )

        file_handlers.append(_rotating_handler(config, "app.log", file_formatter))

        session_handler = _rotating_handler(config, "sessions.log", file_formatter)
        session_handler.addFilter(PrefixFilter(SESSION_LOGGER_PREFIX))
        file_handlers.append(session_handler)

        db_handler = _rotating_handler(config, "database.log", file_formatter)
        db_handler.addFilter(PrefixFilter(*DATABASE_LOGGER_PREFIXES))
        file_handlers.append(db_handler)

    if file_handlers:
        log_queue = queue.Queue(-1)
        root_logger.addHandler(logging.handlers.QueueHandler(log_queue))

        # respect_handler_level=True ensures only relevant logs are processed
        _queue_listener = logging.handlers.QueueListener(
            log_queue,
            *file_handlers,
            respect_handler_level=True,
        )
        _queue_listener.start()
        atexit.register(stop_queue_listener)

    sqlalchemy_logger = logging.getLogger("sqlalchemy.engine")
    sqlalchemy_logger.setLevel(level if config.query_logging else logging.WARNING)


def setup_logging_from_settings() -> None:
    """Configure logging from the LOG_* environment settings."""
    from .config import settings

    setup_logging(
        LogConfig(
            **settings.logging.log_config,
            query_logging=settings.performance.enable_query_logging,
        )
    )


def stop_queue_listener() -> None:
    """Stop the queue listener gracefully.

    Called automatically on exit via atexit.
    """
    global _queue_listener

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None


class DiagnosticSessionLogger:
    """Structured logger for diagnostic session lifecycle events."""

    def __init__(self, name: str = "lifecycle"):
        self.logger = logging.getLogger(f"{SESSION_LOGGER_PREFIX}.{name}")

    def session_created(
        self,
        session_id: str,
        problem_id: Optional[str],
        device_id: Optional[str],
        total_steps: int,
        user_id: Optional[str] = None,
    ) -> None:
        """Log when a session is started."""
        self.logger.info(
            f"Session created | Session ID: {session_id} | Problem: {problem_id} | "
            f"Device: {device_id} | Steps: {total_steps} | User: {user_id or '-'}"
        )

    def progress_updated(
        self, session_id: str, step_id: str, completed_steps: int, total_steps: int
    ) -> None:
        """Log a progress write."""
        self.logger.debug(
            f"Session progress | Session ID: {session_id} | Step: {step_id} | "
            f"Completed: {completed_steps}/{total_steps}"
        )

    def session_completed(self, session_id: str, success: bool, duration_seconds: int) -> None:
        """Log when a session is completed."""
        self.logger.info(
            f"Session completed | Session ID: {session_id} | Success: {success} | "
            f"Duration: {duration_seconds}s"
        )

    def sessions_abandoned(self, count: int, older_than_hours: int) -> None:
        """Log the sweep of stale active sessions."""
        if count:
            self.logger.warning(
                f"Abandoned sessions closed | Count: {count} | Older than: {older_than_hours}h"
            )

    def sessions_purged(self, count: int, retention_days: int) -> None:
        """Log deletion of completed sessions past retention."""
        self.logger.info(
            f"Completed sessions purged | Count: {count} | Retention: {retention_days} days"
        )

    def error_occurred(
        self,
        operation: str,
        session_id: Optional[str] = None,
        error: str = "",
    ) -> None:
        """Log errors with context."""
        context_str = f"Session ID: {session_id}" if session_id else "No context"
        self.logger.error(
            f"Session error | Operation: {operation} | {context_str} | Error: {error}"
        )
