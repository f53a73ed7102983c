"""Structured logging for Herald.

JSON output for production, colored console output for development. Most
modules log through ``logging.getLogger(__name__)``; the API layer and the
retry scheduler use :func:`get_logger`, so the delivery context bound with
:func:`bind_delivery_context` appears on every scheduler line logged while an
attempt is running.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor

_configured = False


def configure_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: "json" for production, "text" for development.
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format.lower() == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_delivery_context(
    webhook_id: str,
    delivery_id: str | None = None,
    event_type: str | None = None,
) -> None:
    """Attach delivery identifiers to all log lines in the current task.

    asyncio tasks copy the context on creation, so binding inside a delivery
    task does not leak into the producer or into sibling deliveries.
    """
    context: dict[str, object] = {"webhook_id": webhook_id}
    if delivery_id is not None:
        context["delivery_id"] = delivery_id
    if event_type is not None:
        context["event_type"] = event_type
    structlog.contextvars.bind_contextvars(**context)


def bind_context(**kwargs: object) -> None:
    """Bind arbitrary key-value pairs to subsequent log lines."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables (end of request or task)."""
    structlog.contextvars.clear_contextvars()
