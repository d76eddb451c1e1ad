"""SendGrid v3 mail-send client with retry and status classification.

Provides the ``SendGridSender`` class that hands an ``OutgoingEmail`` to the
delivery API.  Threading headers travel in the personalization ``headers``
block.  Failures are classified where the HTTP status is observed:

- 202: accepted
- 401/403: credential problem, logged critical, never retried
- 429 and 5xx: retried with backoff
- any other 4xx: bad request, never retried
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from llmbox.domain.errors import DeliveryError, ExternalServiceError
from llmbox.domain.types import ErrorKind
from llmbox.email.models import OutgoingEmail
from llmbox.resilience.retry import RetryPolicy, retry_async

logger = structlog.get_logger()

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"
SERVICE_NAME = "sendgrid"


def build_payload(outgoing: OutgoingEmail) -> dict[str, Any]:
    """Build the SendGrid v3 JSON body for *outgoing*."""
    headers: dict[str, str] = {}
    if outgoing.in_reply_to:
        headers["In-Reply-To"] = outgoing.in_reply_to
    if outgoing.references:
        headers["References"] = " ".join(outgoing.references)

    personalization: dict[str, Any] = {
        "to": [{"email": outgoing.to_email}],
        "subject": outgoing.subject,
    }
    if headers:
        personalization["headers"] = headers

    return {
        "personalizations": [personalization],
        "from": {"email": outgoing.from_email},
        "content": [{"type": "text/plain", "value": outgoing.body}],
    }


def classify_status(status_code: int, detail: str = "") -> ExternalServiceError:
    """Map a non-202 SendGrid status to a structured error."""
    if status_code in (401, 403):
        kind = ErrorKind.AUTH_FAILURE
    elif status_code == 429:
        kind = ErrorKind.RATE_LIMITED
    else:
        kind = ErrorKind.SEND_FAILURE
    return ExternalServiceError(
        kind,
        service=SERVICE_NAME,
        message=detail or f"HTTP {status_code}",
        status_code=status_code,
    )


class SendGridSender:
    """Deliver replies through the SendGrid v3 API.

    Args:
        api_key: SendGrid API key.
        policy: Retry policy applied to each send; its ``timeout`` bounds a
            single attempt.
        client: Optional pre-built ``httpx.AsyncClient`` (tests pass one with
            a ``MockTransport``).
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        api_key: str,
        policy: RetryPolicy,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Any = None,
    ) -> None:
        self._api_key = api_key
        self._policy = policy
        # The client timeout matches the per-attempt budget so httpx never cuts an
        # attempt short of the policy.
        self._client = client or httpx.AsyncClient(timeout=policy.timeout)
        self._sleep = sleep

    async def _post(self, payload: dict[str, Any]) -> str | None:
        try:
            response = await self._client.post(
                SENDGRID_API_URL,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(
                ErrorKind.TIMEOUT, service=SERVICE_NAME, message=str(exc)
            ) from exc
        except httpx.TransportError as exc:
            raise ExternalServiceError(
                ErrorKind.SEND_FAILURE, service=SERVICE_NAME, message=str(exc), transient=True
            ) from exc

        if response.status_code == 202:
            return response.headers.get("X-Message-Id")

        error = classify_status(response.status_code, response.text[:500])
        if error.is_critical:
            logger.critical(
                "sendgrid_auth_failed",
                status_code=response.status_code,
                detail="check SENDGRID_API_KEY",
            )
        elif response.status_code != 429 and response.status_code < 500:
            logger.error(
                "sendgrid_bad_request",
                status_code=response.status_code,
                response=response.text[:500],
            )
        raise error

    async def send(self, outgoing: OutgoingEmail) -> str | None:
        """Send *outgoing*, retrying transient failures.

        Args:
            outgoing: The email to deliver.

        Returns:
            The SendGrid ``X-Message-Id`` of the accepted message, if any.

        Raises:
            DeliveryError: When delivery fails terminally.  Callers log it and
                never send another email about it.
        """
        payload = build_payload(outgoing)
        logger.info(
            "sendgrid_send_started",
            to=outgoing.to_email,
            subject=outgoing.subject,
            body_length=len(outgoing.body),
        )
        kwargs: dict[str, Any] = {"api_name": SERVICE_NAME}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            provider_id = await retry_async(lambda: self._post(payload), self._policy, **kwargs)
        except ExternalServiceError as exc:
            logger.error(
                "sendgrid_send_failed",
                to=outgoing.to_email,
                kind=exc.kind,
                status_code=exc.status_code,
                error=str(exc),
            )
            raise DeliveryError(exc) from exc

        logger.info("sendgrid_send_succeeded", to=outgoing.to_email, provider_id=provider_id)
        return provider_id

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
