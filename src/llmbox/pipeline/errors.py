"""Failure classification and canned user-facing reply bodies.

Every inbound-leg failure maps to a reply so the sender always hears back.
Send-side failures never map to a reply: emailing the user about a failed
email would loop with the inbound transport.
"""

from __future__ import annotations

from llmbox.domain.errors import ExternalServiceError
from llmbox.domain.types import ErrorKind
from llmbox.email.models import IncomingEmail, OutgoingEmail
from llmbox.email.threading import format_reply

RATE_LIMITED_BODY = """Dear User,

I'm experiencing high demand right now. Please try again in a few minutes.

Thank you for your patience!

Best regards,
Email Assistant Service"""

TIMEOUT_BODY = """Dear User,

I'm taking longer than usual to respond. Please try again in a few minutes.

Thank you for your patience!

Best regards,
Email Assistant Service"""

REFUSAL_BODY = """Dear User,

I'm not able to help with this request. Please rephrase your question or \
ask about something else.

Best regards,
Email Assistant Service"""

PROVIDER_ERROR_BODY = """Dear User,

Sorry, I'm having trouble responding right now. Please try again in a few minutes.

If this issue persists, please reach out to our support team.

Best regards,
Email Assistant Service"""

GENERIC_ERROR_BODY = """Dear User,

Sorry, I encountered a technical issue. Please try again shortly.

If this problem continues, please contact our support team.

Best regards,
Email Assistant Service"""

_TEMPLATES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: RATE_LIMITED_BODY,
    ErrorKind.TIMEOUT: TIMEOUT_BODY,
    ErrorKind.REFUSAL: REFUSAL_BODY,
    ErrorKind.AUTH_FAILURE: PROVIDER_ERROR_BODY,
    ErrorKind.GENERIC_PROVIDER_ERROR: PROVIDER_ERROR_BODY,
}


def classify_failure(exc: BaseException) -> ErrorKind:
    """Return the taxonomy bucket for a failure raised on the inbound leg."""
    if isinstance(exc, ExternalServiceError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    return ErrorKind.GENERIC_PROVIDER_ERROR


def error_reply_body(kind: ErrorKind) -> str:
    """Return the canned reply for *kind*.

    Raises:
        ValueError: For ``send_failure`` and ``validation_error``, which
            never produce a reply.
    """
    if kind in (ErrorKind.SEND_FAILURE, ErrorKind.VALIDATION_ERROR):
        raise ValueError(f"{kind} has no user-facing reply")
    return _TEMPLATES.get(kind, GENERIC_ERROR_BODY)


def build_error_reply(
    incoming: IncomingEmail,
    kind: ErrorKind | None,
    from_email: str,
) -> OutgoingEmail:
    """Build the threaded apology for *incoming*.

    Args:
        incoming: The email that could not be answered.
        kind: The classified failure, or ``None`` for an internal fault.
        from_email: The service address the reply is sent from.
    """
    body = GENERIC_ERROR_BODY if kind is None else error_reply_body(kind)
    return format_reply(incoming, body, from_email)
