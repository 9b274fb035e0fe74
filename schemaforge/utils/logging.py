"""
Structured logging configuration using structlog.

JSON output in production (one event per line, ready for log shipping) and
colored console output in debug mode.

Background work (bulk jobs, websocket sessions, maintenance sweeps) binds
its identifiers through contextvars so every event it emits carries
``job_id`` / ``user_id`` / ``project_id`` without passing loggers around.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.processors import (
    CallsiteParameter,
    CallsiteParameterAdder,
    EventRenamer,
)
from structlog.typing import BindableLogger, Processor

from schemaforge.core.config import get_settings


def _add_app_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add application context to all log entries."""
    settings = get_settings()
    event_dict["app"] = settings.app_name
    event_dict["environment"] = "development" if settings.debug else "production"
    return event_dict


def _configure_stdlib_logging(log_level: str) -> None:
    """Route standard library logging (uvicorn, sqlalchemy, httpx) to stdout."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )

    # Silence noisy loggers
    for name in ("httpx", "httpcore", "asyncio", "aiosqlite", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging() -> None:
    """
    Configure structlog for the application.

    Call this once at application startup (API lifespan or CLI command).
    """
    settings = get_settings()

    _configure_stdlib_logging(settings.log_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        CallsiteParameterAdder(
            [
                CallsiteParameter.FILENAME,
                CallsiteParameter.LINENO,
                CallsiteParameter.FUNC_NAME,
            ]
        ),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_app_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.debug:
        processors: list[Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
                sort_keys=True,
            ),
        ]
    else:
        processors = [
            *shared_processors,
            EventRenamer(to="msg"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, settings.log_level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> BindableLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically module name)
        **initial_context: Initial context to bind to all log entries

    Returns:
        BindableLogger: Structured logger with optional initial context

    Example:
        >>> logger = get_logger("services.scheduler", job_id="bulk_3f2a")
        >>> logger.info("Chunk dispatched", size=3)
    """
    logger = structlog.get_logger(name)

    if initial_context:
        logger = logger.bind(**initial_context)

    return logger


@contextmanager
def bound_context(**context: Any) -> Iterator[None]:
    """
    Temporarily bind context variables within a context manager.

    Context is restored when exiting the block.

    Example:
        >>> with bound_context(job_id="bulk_3f2a", user_id="u1"):
        ...     logger.info("Processing chunk")
    """
    with structlog.contextvars.bound_contextvars(**context):
        yield
