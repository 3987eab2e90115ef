"""Structured logging configuration for routing observability.

Configures structlog with JSON output in production and a readable
console renderer in development.

Features:
- ISO8601 timestamps in UTC
- Route ID propagation through contextvars, so every line logged while a
  routing decision is being made carries the same ``route_id``
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "logger": "provider_router.routing.router",
        "event": "smart_router.route_selected",
        "route_id": "route_3f9a...",
        "provider": "grok",
        "model": "grok-3-mini",
        "tier": "mini"
    }
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def new_route_id() -> str:
    """Generate a short unique identifier for one routing traversal."""
    return f"route_{uuid.uuid4().hex[:16]}"


@contextmanager
def route_context(route_id: str) -> Iterator[str]:
    """Bind ``route_id`` to the log context for the duration of the block.

    Previously bound values are restored on exit, so nested routing
    (e.g. a fallback computed inside a caller's own context) is safe.
    """
    with structlog.contextvars.bound_contextvars(route_id=route_id):
        yield route_id


def bind_provider_context(provider: str, model: str | None = None) -> None:
    """Bind provider/model to the log context of the calling request.

    Intended for the request-execution layer, which holds the context for
    the whole network attempt.
    """
    values = {"provider": provider}
    if model is not None:
        values["model"] = model
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
