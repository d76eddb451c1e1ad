"""Logging, tracing, error reporting, and metrics."""

from llmbox.observability.logging import (
    bind_correlation_key,
    configure_logging,
    resolve_log_level,
    truncate,
)

__all__ = [
    "bind_correlation_key",
    "configure_logging",
    "resolve_log_level",
    "truncate",
]
