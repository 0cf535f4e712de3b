"""
Centralized error handling decorators for database operations.

Every repository method is wrapped so that a failure is logged once with a
Russian context message (operation and table) and then re-raised unchanged.
Callers always see the original driver or domain exception.
"""
import functools
import inspect
import logging
import traceback
from typing import Any, Callable, Optional

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InvalidRequestError,
    OperationalError,
    PendingRollbackError,
    SQLAlchemyError,
    StatementError,
    TimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession


logger = logging.getLogger(__name__)


class DatabaseErrorHandler:
    """Centralized database error handling utilities."""

    # Common database exceptions to catch
    DATABASE_EXCEPTIONS = (
        SQLAlchemyError,
        IntegrityError,
        OperationalError,
        DisconnectionError,
        TimeoutError,
        StatementError,
        InvalidRequestError,
        PendingRollbackError,
        ConnectionError,
    )

    # Precondition failures raised by repositories themselves
    DOMAIN_EXCEPTIONS = (ValueError, LookupError)

    @staticmethod
    def handle_database_error(
        exc: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> tuple[bool, str]:
        """
        Classify a database error and build its log message.

        Args:
            exc: The exception that occurred
            operation: Description of the database operation
            context: Additional context information

        Returns:
            Tuple of (is_recoverable, error_message)
        """
        context_str = f" | Контекст: {context}" if context else ""

        if isinstance(exc, IntegrityError):
            return False, f"Нарушение целостности данных при операции «{operation}»: {exc}{context_str}"

        elif isinstance(exc, (ConnectionError, DisconnectionError)):
            return True, f"Потеряно соединение с базой данных при операции «{operation}»: {exc}{context_str}"

        elif isinstance(exc, TimeoutError):
            return True, f"Истекло время ожидания базы данных при операции «{operation}»: {exc}{context_str}"

        elif isinstance(exc, OperationalError):
            return True, f"Ошибка базы данных при операции «{operation}»: {exc}{context_str}"

        elif isinstance(exc, StatementError):
            return False, f"Ошибка выполнения запроса при операции «{operation}»: {exc}{context_str}"

        else:
            return False, (
                f"Непредвиденная ошибка базы данных при операции «{operation}»: "
                f"{type(exc).__name__}: {exc}{context_str}"
            )


def _describe_operation(func: Callable, operation_name: Optional[str], args: tuple) -> str:
    """Build the operation label, adding the repository table when known."""
    operation = operation_name or getattr(func, "__name__", "unknown")
    table_name = getattr(args[0], "table_name", None) if args else None
    if isinstance(table_name, str):
        return f"{operation} [{table_name}]"
    return operation


def _log(level: str, message: str) -> None:
    getattr(logger, level, logger.error)(message)


def handle_database_exceptions(
    operation_name: Optional[str] = None,
    reraise: bool = True,
    default_return: Any = None,
    log_level: str = "error"
) -> Callable:
    """
    Decorator to wrap async database operations with error logging.

    Args:
        operation_name: Name of the operation for logging (defaults to function name)
        reraise: Whether to re-raise the exception after logging
        default_return: Value to return if an error occurs and reraise=False
        log_level: Logging level for errors ('error', 'warning', 'info')

    Returns:
        Decorated function with error handling
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            operation = _describe_operation(func, operation_name, args)

            try:
                result = await func(*args, **kwargs)
                logger.debug(f"Операция «{operation}» выполнена")
                return result

            except DatabaseErrorHandler.DATABASE_EXCEPTIONS as exc:
                context = {
                    "function": getattr(func, "__name__", "unknown"),
                    "kwargs_keys": list(kwargs.keys()) if kwargs else [],
                }
                _, error_msg = DatabaseErrorHandler.handle_database_error(exc, operation, context)
                _log(log_level, error_msg)

                if reraise:
                    raise
                logger.info(f"Операция «{operation}» не выполнена, возвращено значение по умолчанию: {default_return}")
                return default_return

            except DatabaseErrorHandler.DOMAIN_EXCEPTIONS as exc:
                logger.warning(f"Операция «{operation}» отклонена: {exc}")
                if reraise:
                    raise
                return default_return

            except Exception as exc:
                logger.error(
                    f"Непредвиденная ошибка при операции «{operation}»: {type(exc).__name__}: {exc}\n"
                    f"Traceback: {traceback.format_exc()}"
                )
                if reraise:
                    raise
                return default_return

        return async_wrapper

    return decorator


def _find_session(args: tuple, kwargs: dict) -> Optional[AsyncSession]:
    for value in list(args) + list(kwargs.values()):
        if isinstance(value, AsyncSession):
            return value
    return None


def database_transaction(
    operation_name: Optional[str] = None,
    commit_on_success: bool = True,
    rollback_on_error: bool = True
) -> Callable:
    """
    Decorator to run an async operation as one transaction.

    The AsyncSession is located among the call arguments. Every statement
    issued by the operation is committed together or rolled back together.

    Args:
        operation_name: Name of the operation for logging
        commit_on_success: Whether to commit on successful completion
        rollback_on_error: Whether to rollback on error

    Returns:
        Decorated function with transaction handling
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"database_transaction requires an async function, got {func.__name__}")

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            operation = _describe_operation(func, operation_name, args)
            db_session = _find_session(args, kwargs)

            if db_session is None:
                logger.warning(f"Не найдена сессия БД для транзакции «{operation}»")
                return await func(*args, **kwargs)

            try:
                logger.debug(f"Начало транзакции «{operation}»")
                result = await func(*args, **kwargs)

                if commit_on_success:
                    await db_session.commit()
                    logger.debug(f"Транзакция «{operation}» зафиксирована")

                return result

            except Exception:
                if rollback_on_error:
                    try:
                        await db_session.rollback()
                        logger.debug(f"Транзакция «{operation}» отменена")
                    except Exception as rollback_exc:
                        logger.error(f"Не удалось откатить транзакцию «{operation}»: {rollback_exc}")
                raise

        return async_wrapper

    return decorator


def log_database_operation(
    operation: str,
    level: str = "debug"
) -> Callable:
    """
    Decorator to log the start and end of an async operation.

    Args:
        operation: Description of the operation
        level: Logging level ('debug', 'info', 'warning', 'error')
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            logger_method = getattr(logger, level)
            func_name = getattr(func, "__name__", "unknown")
            logger_method(f"Начало: {operation} ({func_name})")

            try:
                result = await func(*args, **kwargs)
                logger_method(f"Завершено: {operation} ({func_name})")
                return result
            except Exception as exc:
                logger_method(f"Сбой: {operation} ({func_name}): {exc}")
                raise

        return async_wrapper

    return decorator


# Convenience decorators for common patterns
def safe_database_query(func=None, operation_name: Optional[str] = None, default_return: Any = None) -> Callable:
    """
    Safe database query decorator that never raises exceptions.
    Use for optional reads where an empty result is an acceptable answer.

    Can be used with or without parentheses:
        @safe_database_query
        @safe_database_query("получение отметок шага", default_return=[])
    """
    def decorator(f: Callable) -> Callable:
        return handle_database_exceptions(
            operation_name=operation_name,
            reraise=False,
            default_return=default_return,
            log_level="warning"
        )(f)

    if func is None:
        return decorator
    elif callable(func):
        return decorator(func)
    else:
        # Called with operation name as first positional arg
        return safe_database_query(operation_name=func, default_return=default_return)


def critical_database_operation(func=None, operation_name: Optional[str] = None) -> Callable:
    """
    Decorator that logs errors and always re-raises them.

    Can be used with or without parentheses:
        @critical_database_operation
        @critical_database_operation("создание записи")
    """
    def decorator(f: Callable) -> Callable:
        return handle_database_exceptions(
            operation_name=operation_name,
            reraise=True,
            log_level="error"
        )(f)

    if func is None:
        return decorator
    elif callable(func):
        return decorator(func)
    else:
        return critical_database_operation(operation_name=func)


def transactional_database_operation(func=None, operation_name: Optional[str] = None) -> Callable:
    """
    Combined decorator for transactional database operations with error handling.

    Can be used with or without parentheses:
        @transactional_database_operation
        @transactional_database_operation("перенумерация шагов")
    """
    def decorator(f: Callable) -> Callable:
        transaction_decorated = database_transaction(operation_name=operation_name)(f)
        return handle_database_exceptions(operation_name=operation_name, reraise=True)(transaction_decorated)

    if func is None:
        return decorator
    elif callable(func):
        return decorator(func)
    else:
        return transactional_database_operation(operation_name=func)
