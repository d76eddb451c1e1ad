"""Pydantic v2 models for the email domain.

Provides frozen (immutable) models for the inbound email parsed from the
webhook submission and the outbound reply handed to the delivery API.
"""

from pydantic import BaseModel, ConfigDict


class IncomingEmail(BaseModel):
    """An email received through the inbound webhook.

    Immutable once parsed.  ``references`` lists prior Message-IDs oldest
    first, exactly as they appeared in the ``References`` header.
    """

    model_config = ConfigDict(frozen=True)

    from_email: str
    to_email: str
    subject: str
    body: str
    message_id: str  # RFC 5322 Message-ID, synthesized when absent
    in_reply_to: str | None = None
    references: tuple[str, ...] = ()
    timestamp: str  # ISO 8601


class OutgoingEmail(BaseModel):
    """A reply (or standalone newsletter) to be handed to the delivery API.

    When ``in_reply_to`` and ``references`` are set the message threads under
    the original conversation.
    """

    model_config = ConfigDict(frozen=True)

    from_email: str
    to_email: str
    subject: str
    body: str
    in_reply_to: str | None = None
    references: tuple[str, ...] = ()
