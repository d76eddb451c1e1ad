"""structlog configuration and correlation-key binding.

Every log line emitted while a pipeline invocation runs carries the inbound
``message_id`` once it is known, so one email can be followed end to end in
the log stream.
"""

from __future__ import annotations

import logging

import structlog

SERVICE_NAME = "llmbox"

_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def resolve_log_level(name: str) -> int:
    """Map a configured level name to a ``logging`` level, defaulting to INFO."""
    return _LEVELS.get(name.upper(), logging.INFO)


def configure_logging(
    level: str = "INFO",
    production: bool = False,
    sentry_enabled: bool = False,
) -> None:
    """Configure structlog for production (JSON) or development (console).

    Args:
        level: Minimum level name; events below it are dropped.
        production: Render JSON lines when ``True``, colored console otherwise.
        sentry_enabled: Insert the Sentry processor so ERROR events are
            forwarded to Sentry.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if sentry_enabled:
        from llmbox.observability.sentry import get_sentry_processor

        processors.append(get_sentry_processor())

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_log_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)


def bind_correlation_key(message_id: str) -> None:
    """Bind the inbound Message-ID to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(message_id=message_id)


def truncate(text: str, max_length: int = 100) -> str:
    """Shorten *text* for log previews, marking the cut with ``...``."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
