"""Resilience infrastructure for external API calls."""

from llmbox.resilience.retry import (
    DEFAULT_RETRYABLE_STATUS_CODES,
    RetryPolicy,
    is_retryable_error,
    retry_async,
)

__all__ = [
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "RetryPolicy",
    "is_retryable_error",
    "retry_async",
]
