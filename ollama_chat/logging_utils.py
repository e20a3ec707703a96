"""
Centralized logging and error classification for the chat client.

structlog is configured once, on import. Everything else here is shared by
the client, the presentation state machine and the terminal front-end:

- `ChatErrorHandler` maps transport, protocol and validation failures to a
  small set of log categories
- `log_operation` and `operation_context` time an async call or block and
  log its outcome
- `ContextualLogger` keeps session fields (id, model, runner) on every entry
"""

from __future__ import annotations

import functools
import json
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from pydantic import ValidationError

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)


class ChatErrorHandler:
    """Error classification with structured logging."""

    # Checked in order; TimeoutError and JSONDecodeError must precede the
    # OSError and ValueError families they belong to
    CATEGORIES: tuple[tuple[tuple[type[BaseException], ...], str], ...] = (
        ((httpx.TimeoutException, TimeoutError), "timeout_error"),
        ((httpx.HTTPStatusError,), "http_status_error"),
        ((httpx.DecodingError, json.JSONDecodeError), "protocol_error"),
        ((ValidationError,), "validation_error"),
        ((httpx.TransportError, ConnectionError, OSError), "connection_error"),
        ((ValueError, TypeError), "parameter_error"),
    )

    @classmethod
    def classify_error(cls, error: BaseException) -> str:
        """
        Classify an error into a log category.

        Client exceptions name their own category; anything else is matched
        against `CATEGORIES`, falling back to ``"unknown_error"``.
        """
        category = getattr(error, "category", None)
        if isinstance(category, str):
            return category
        for error_types, name in cls.CATEGORIES:
            if isinstance(error, error_types):
                return name
        return "unknown_error"

    @classmethod
    def failure_fields(cls, error: BaseException) -> dict[str, Any]:
        return {
            "error_type": type(error).__name__,
            "error_category": cls.classify_error(error),
            "error_message": str(error),
        }

    @classmethod
    def log_failure(
        cls,
        error: BaseException,
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Log a failure with its classification and return the category."""
        fields = cls.failure_fields(error)
        logger.error(
            "Operation failed", operation=operation, **fields, **(context or {})
        )
        return fields["error_category"]


def _elapsed_ms(start_time: float | None) -> dict[str, Any]:
    if start_time is None:
        return {}
    return {"duration_ms": round((time.perf_counter() - start_time) * 1000, 2)}


def log_operation(
    operation: str,
    *,
    log_args: bool = False,
    log_result: bool = False,
    log_timing: bool = True,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context.

    Args:
        operation: Name of the operation in log entries
        log_args: Whether to log call arguments (``self`` is skipped)
        log_result: Whether to log the returned value
        log_timing: Whether to log ``duration_ms``
        context: Extra fields bound to every entry

    Failures are logged with their category and re-raised unchanged.
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            bound = logger.bind(
                operation=operation, function=func.__name__, **(context or {})
            )
            if log_args:
                bound.debug("Operation started", args=args[1:], kwargs=kwargs)
            else:
                bound.debug("Operation started")

            start_time = time.perf_counter() if log_timing else None
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                bound.error(
                    "Operation failed",
                    **ChatErrorHandler.failure_fields(e),
                    **_elapsed_ms(start_time),
                )
                raise

            extra = {"result": result} if log_result else {}
            bound.info("Operation completed", **_elapsed_ms(start_time), **extra)
            return result

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
):
    """Time a block like `log_operation` times a call; yields the bound logger."""
    bound = logger.bind(operation=operation, **(context or {}))
    bound.debug("Operation started")
    start_time = time.perf_counter() if log_timing else None

    try:
        yield bound
    except Exception as e:
        bound.error(
            "Operation failed",
            **ChatErrorHandler.failure_fields(e),
            **_elapsed_ms(start_time),
        )
        raise

    bound.info("Operation completed", **_elapsed_ms(start_time))


class ContextualLogger:
    """Logger carrying the fields of one chat session."""

    def __init__(self, base_context: dict[str, Any] | None = None):
        self.base_context = dict(base_context or {})
        self._logger = logger.bind(**self.base_context)

    def bind(self, **context: Any) -> ContextualLogger:
        return ContextualLogger({**self.base_context, **context})

    def debug(self, message: str, **context: Any) -> None:
        self._logger.debug(message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._logger.info(message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._logger.warning(message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._logger.error(message, **context)
