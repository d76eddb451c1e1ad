"""Domain-specific exception classes for the LLMBox pipeline.

Provider failures are classified where they are first observed: the code
that sees the HTTP status or the SDK exception raises an
``ExternalServiceError`` with an explicit ``kind`` and ``status_code``, and
everything downstream branches on those fields.
"""

from __future__ import annotations

from typing import Any

from llmbox.domain.types import ErrorKind, PipelineState


class LLMBoxError(Exception):
    """Base class for all domain errors in LLMBox."""


class ValidationError(LLMBoxError):
    """Raised when an inbound webhook submission is missing required fields.

    This is the caller's fault and the only failure surfaced to the inbound
    transport as a rejection.

    Attributes:
        missing_fields: Required field names that were absent or empty.
        available_fields: Every field name that was received.
        payload: The full received field set, for diagnostics.
    """

    kind = ErrorKind.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        *,
        missing_fields: list[str] | None = None,
        available_fields: list[str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.missing_fields = list(missing_fields or [])
        self.available_fields = list(available_fields or [])
        self.payload = dict(payload or {})
        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Diagnostic details returned to the transport alongside the 400."""
        return {
            "missingFields": self.missing_fields,
            "availableFields": self.available_fields,
            "fullPayload": self.payload,
        }


class ExternalServiceError(LLMBoxError):
    """A classified failure from the completion API or the delivery API.

    Attributes:
        kind: Taxonomy bucket for this failure.
        service: Name of the collaborator that failed (``"anthropic"``,
            ``"sendgrid"``).
        status_code: HTTP status when one was observed, else ``None``.
        transient: ``True`` for network-level failures that are worth
            retrying even without a status code.
    """

    def __init__(
        self,
        kind: ErrorKind,
        *,
        service: str,
        message: str = "",
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        self.kind = kind
        self.service = service
        self.status_code = status_code
        self.transient = transient
        detail = message or kind.value
        super().__init__(f"{service} {kind.value}: {detail}")

    @property
    def is_critical(self) -> bool:
        """Return True for operator-fault failures (bad credentials)."""
        return self.kind == ErrorKind.AUTH_FAILURE


class DeliveryError(ExternalServiceError):
    """Terminal failure to hand a reply to the email-delivery API.

    Never user-visible: the pipeline logs it and still acknowledges the
    webhook, so the transport does not redeliver and re-bill the email.

    Attributes:
        cause: The last classified error observed before giving up.
    """

    def __init__(self, cause: ExternalServiceError) -> None:
        self.cause = cause
        super().__init__(
            ErrorKind.SEND_FAILURE,
            service=cause.service,
            message=str(cause),
            status_code=cause.status_code,
        )


class InvalidTransitionError(LLMBoxError):
    """Raised when an invalid pipeline state transition is attempted.

    Attributes:
        current_state: The state the machine was in when the transition was attempted.
        event: The event that was rejected.
    """

    def __init__(self, current_state: PipelineState, event: str) -> None:
        self.current_state = current_state
        self.event = event
        super().__init__(f"Cannot apply event '{event}' in state '{current_state}'")
