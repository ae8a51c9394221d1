"""
Standardized Error Handling for reportcache
===========================================

This module provides the exception hierarchy and the shared error handling
helpers used by the query cache, the plan analyzer and the report service.
"""

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional, Type

logger = logging.getLogger(__name__)


class ReportCacheError(Exception):
    """Base exception for all reportcache errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        super().__init__(message)

        # Log error with context for debugging
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        logger.error(
            f"Cache error: {message}" + (f" ({context_str})" if context_str else "")
        )


class CacheConfigurationError(ReportCacheError, ValueError):
    """Raised when cache configuration is invalid."""

    pass


class CacheKeyError(ReportCacheError):
    """Raised when a (query, params) pair cannot be serialized into a key."""

    pass


class CacheReadError(ReportCacheError):
    """Raised when the underlying store fails on a lookup."""

    pass


class CacheWriteError(ReportCacheError):
    """Raised when the underlying store fails to accept an entry."""

    pass


class CacheCapacityError(CacheWriteError):
    """Raised when a bounded store has no room for a new key."""

    pass


class AnalysisError(ReportCacheError):
    """Raised when explaining or executing a query for analysis fails."""

    pass


class PlanFormatError(AnalysisError):
    """Raised when an execution plan payload has an unexpected shape."""

    pass


def with_error_handling(
    error_type: Type[ReportCacheError] = ReportCacheError,
    context: Optional[Dict[str, Any]] = None,
    reraise: bool = True,
    default_return: Any = None,
):
    """
    Decorator for standardized error handling in cache operations.

    Args:
        error_type: Type of ReportCacheError to raise
        context: Additional context to include in error
        reraise: Whether to reraise the exception after logging
        default_return: Value to return if not reraising
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ReportCacheError:
                # Re-raise our own errors as-is
                raise
            except Exception as e:
                error_context = (context or {}).copy()
                error_context.update(
                    {
                        "function": func.__name__,
                        "original_error": str(e),
                        "original_error_type": type(e).__name__,
                    }
                )

                error_msg = f"Error in {func.__name__}: {e}"
                cache_error = error_type(error_msg, error_context)

                if reraise:
                    raise cache_error from e
                else:
                    logger.warning(f"Suppressed error in {func.__name__}: {e}")
                    return default_return

        return wrapper

    return decorator


@contextmanager
def cache_operation_context(operation: str, **context):
    """
    Context manager for cache operations with standardized logging.

    Args:
        operation: Description of the operation
        **context: Additional context for logging
    """
    logger.debug(f"Starting cache operation: {operation}", extra=context)
    start_time = time.perf_counter()

    try:
        yield
    except ReportCacheError:
        logger.error(f"Cache operation failed: {operation}", extra=context)
        raise
    except Exception as e:
        logger.error(
            f"Unexpected error in cache operation: {operation} - {e}", extra=context
        )
        raise

    duration = time.perf_counter() - start_time
    logger.debug(
        f"Cache operation completed: {operation} ({duration:.3f}s)", extra=context
    )


def log_cache_performance(func: Callable) -> Callable:
    """Decorator to log performance metrics for cache operations."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.warning(
                f"Cache operation {func.__name__} failed after {duration:.3f}s: {e}"
            )
            raise

        duration = time.perf_counter() - start_time
        logger.debug(f"Cache operation {func.__name__} completed in {duration:.3f}s")
        return result

    return wrapper
