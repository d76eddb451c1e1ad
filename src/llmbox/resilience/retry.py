"""Exponential-backoff retry for external calls, built on tenacity.

Each external call (model invocation, email send) is wrapped on its own; a
retry never spans more than one collaborator.  Attempts run sequentially:
call, classify, sleep, call again.

Default policy: 3 attempts, 1s base delay doubling each time (1s, 2s, 4s),
retrying on 429/500/502/503/504, timeouts, and transient network errors.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from llmbox.domain.errors import ExternalServiceError
from llmbox.domain.types import ErrorKind

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape for one kind of external call.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Seconds to wait after the first failure.
        multiplier: Growth factor applied to the delay on each further failure.
        retryable_status_codes: HTTP statuses worth another attempt.
        timeout: Per-attempt timeout in seconds; ``None`` disables it.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_STATUS_CODES
    )
    timeout: float | None = None

    def delay_for(self, attempt_number: int) -> float:
        """Return the sleep after failed attempt *attempt_number* (1-based)."""
        return self.base_delay * self.multiplier ** (attempt_number - 1)


def is_retryable_error(exc: BaseException, policy: RetryPolicy) -> bool:
    """Decide from the structured error alone whether another attempt may help.

    Args:
        exc: The exception raised by the attempt.
        policy: The policy supplying the retryable status codes.

    Returns:
        ``True`` for timeouts, transient network errors, and retryable statuses.
    """
    if not isinstance(exc, ExternalServiceError):
        return False
    if exc.kind == ErrorKind.TIMEOUT or exc.transient:
        return True
    return exc.status_code is not None and exc.status_code in policy.retryable_status_codes


def _log_before_sleep(api_name: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retry_attempt",
            api_name=api_name,
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            error=str(exception),
            status_code=getattr(exception, "status_code", None),
        )

    return _before_sleep


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    api_name: str,
    is_retryable: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run *operation* under *policy*, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt budget, delays, status codes, and per-attempt timeout.
        api_name: Collaborator name used in logs and timeout errors.
        is_retryable: Predicate overriding :func:`is_retryable_error`.
        sleep: Awaitable sleep used between attempts.

    Returns:
        The first successful result.

    Raises:
        Exception: The final attempt's exception, unchanged, once the error is
            not retryable or the attempt budget is spent.
    """
    predicate = is_retryable or (lambda exc: is_retryable_error(exc, policy))

    async def _attempt() -> T:
        if policy.timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout)
        except TimeoutError as exc:
            raise ExternalServiceError(
                ErrorKind.TIMEOUT,
                service=api_name,
                message=f"no response within {policy.timeout}s",
            ) from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base_delay, exp_base=policy.multiplier),
        retry=retry_if_exception(predicate),
        before_sleep=_log_before_sleep(api_name, policy.max_attempts),
        sleep=sleep,
        reraise=True,
    )

    try:
        return await retrying(_attempt)
    except Exception as exc:
        logger.error(
            "retry_exhausted" if predicate(exc) else "retry_aborted",
            api_name=api_name,
            attempts=retrying.statistics.get("attempt_number", 1),
            error=str(exc),
        )
        raise
