"""Logging setup and decorators shared by the proxy and the player engine.

All loggers hang off the ``soundrelay`` root, so configuring one service sets
the level for every module logger obtained through :func:`get_logger`.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import time
from typing import Any, Callable, Optional, TypeVar

R = TypeVar("R")

ROOT_LOGGER_NAME = "soundrelay"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_LEVEL_ALIASES = {"warn": "WARNING", "fatal": "CRITICAL"}


def level_from_env(default: str = "INFO") -> int:
    """``LOG_LEVEL`` wins; otherwise a truthy ``DEBUG`` selects DEBUG."""
    name = os.getenv("LOG_LEVEL", "").strip()
    if not name and os.getenv("DEBUG", "").strip().lower() in ("1", "true", "yes", "on"):
        return logging.DEBUG
    name = (name or default).lower()
    level = logging.getLevelName(_LEVEL_ALIASES.get(name, name.upper()))
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_service_logger(service_name: str, *, default_level: str = "INFO") -> logging.Logger:
    """Configure logging for a service process and return its logger."""
    level = level_from_env(default_level)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)
    logger = get_logger(service_name)
    logger.setLevel(level)
    return logger


class _ContextAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        fields = " ".join(f"{key}={value}" for key, value in self.extra.items())
        return f"[{fields}] {msg}", kwargs


def with_log_context(logger: logging.Logger, **context: Any) -> logging.LoggerAdapter:
    """Prefix every message with ``[key=value ...]``."""
    return _ContextAdapter(logger, context)


def _instrument(
    func: Callable[..., R],
    on_success: Optional[Callable[[float], None]],
    on_error: Callable[[Exception, float], None],
) -> Callable[..., R]:
    """Wrap a sync or async callable; callbacks get the elapsed milliseconds."""

    def elapsed(start: float) -> float:
        return (time.perf_counter() - start) * 1000.0

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> R:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                on_error(e, elapsed(start))
                raise
            if on_success is not None:
                on_success(elapsed(start))
            return result

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> R:
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            on_error(e, elapsed(start))
            raise
        if on_success is not None:
            on_success(elapsed(start))
        return result

    return wrapper


def log_exceptions(logger: logging.Logger, message: str, *, level: int = logging.ERROR):
    """Log any exception escaping the wrapped call, then re-raise it.

    Tracebacks are attached only when the logger is at DEBUG.
    """

    def decorator(func: Callable[..., R]) -> Callable[..., R]:
        def on_error(exc: Exception, _ms: float) -> None:
            logger.log(level, f"{message}: {exc}", exc_info=logger.isEnabledFor(logging.DEBUG))

        return _instrument(func, None, on_error)

    return decorator


def log_timing(logger: logging.Logger, operation: str, *, level: int = logging.INFO):
    """Log how long the wrapped call took; failures are logged at WARNING."""

    def decorator(func: Callable[..., R]) -> Callable[..., R]:
        def on_success(ms: float) -> None:
            logger.log(level, "%s completed in %.2fms", operation, ms)

        def on_error(exc: Exception, ms: float) -> None:
            logger.warning("%s failed after %.2fms: %s", operation, ms, exc)

        return _instrument(func, on_success, on_error)

    return decorator
