"""Anthropic client factory and failure classification for the completion API."""

from __future__ import annotations

import anthropic
from anthropic import AsyncAnthropic

from llmbox.domain.errors import ExternalServiceError
from llmbox.domain.types import ErrorKind
from llmbox.resilience.retry import DEFAULT_RETRYABLE_STATUS_CODES

SERVICE_NAME = "anthropic"

# 529 is Anthropic's "overloaded" status.
LLM_RETRYABLE_STATUS_CODES: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES | {529}

WEB_SEARCH_TOOL: dict[str, object] = {
    "type": "web_search_20250305",
    "name": "web_search",
    "max_uses": 5,
}


def create_anthropic_client(api_key: str, timeout: float) -> AsyncAnthropic:
    """Create an async Anthropic client with SDK-level retries disabled.

    Retries are owned by ``retry_async`` so the attempt budget and backoff
    are the same for every external call.

    Args:
        api_key: Anthropic API key.
        timeout: Per-request timeout in seconds.

    Returns:
        Configured ``AsyncAnthropic`` instance.
    """
    return AsyncAnthropic(api_key=api_key, max_retries=0, timeout=timeout)


def classify_anthropic_error(exc: anthropic.AnthropicError) -> ExternalServiceError:
    """Translate an Anthropic SDK exception into an ``ExternalServiceError``."""
    if isinstance(exc, anthropic.APITimeoutError):
        return ExternalServiceError(ErrorKind.TIMEOUT, service=SERVICE_NAME, message=str(exc))
    if isinstance(exc, anthropic.APIConnectionError):
        return ExternalServiceError(
            ErrorKind.GENERIC_PROVIDER_ERROR,
            service=SERVICE_NAME,
            message=str(exc),
            transient=True,
        )
    if isinstance(exc, anthropic.APIStatusError):
        status = exc.status_code
        if status in (401, 403):
            kind = ErrorKind.AUTH_FAILURE
        elif status == 429:
            kind = ErrorKind.RATE_LIMITED
        elif status == 408:
            kind = ErrorKind.TIMEOUT
        else:
            kind = ErrorKind.GENERIC_PROVIDER_ERROR
        return ExternalServiceError(
            kind, service=SERVICE_NAME, message=exc.message, status_code=status
        )
    return ExternalServiceError(
        ErrorKind.GENERIC_PROVIDER_ERROR, service=SERVICE_NAME, message=str(exc)
    )
