"""Performance Logging.

Decorator for timing gateway round-trips and flagging slow ones.
"""

import functools
import inspect
import logging
import time
from typing import Any, Callable, Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
) -> Callable:
    """Log coroutine duration: DEBUG normally, WARNING above the threshold.

    Example:
        @log_performance(threshold_ms=500)
        async def send(self, method, path):
            ...
    """
    if threshold_ms is None:
        threshold_ms = DEFAULT_LOGGING_CONFIG.slow_threshold_ms

    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"log_performance expects a coroutine function, got {func!r}")

        _logger = logging.getLogger(logger_name or func.__module__)
        func_name = func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            failed = False
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                failed = True
                duration_ms = (time.perf_counter() - start) * 1000
                _logger.debug(
                    f"{func_name} failed after {duration_ms:.1f}ms: {type(exc).__name__}",
                    extra={"duration_ms": round(duration_ms, 2)},
                )
                raise
            finally:
                if not failed:
                    duration_ms = (time.perf_counter() - start) * 1000
                    extra = {"duration_ms": round(duration_ms, 2)}
                    if duration_ms >= threshold_ms:
                        _logger.warning(f"Slow operation: {func_name} took {duration_ms:.1f}ms", extra=extra)
                    else:
                        _logger.debug(f"{func_name} completed in {duration_ms:.1f}ms", extra=extra)

        return wrapper

    return decorator
