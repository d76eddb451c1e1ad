"""Newsletter signup and reply-feedback intake.

Signup stores a subscriber's interests (and reactivates a returning address).
Replies to a newsletter are cleaned of quoted text and signatures and stored
as feedback, which the next run folds into the subscriber's prompt.  The
feedback confirmation email is best-effort: a failed send is logged and the
feedback stays recorded.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any

import structlog

from llmbox.domain.errors import ValidationError
from llmbox.domain.models import NewsletterSubscriber
from llmbox.email.models import OutgoingEmail
from llmbox.email.parser import extract_email_address, extract_message_id
from llmbox.email.sender import SendGridSender
from llmbox.store.sqlite import UsageStore

logger = structlog.get_logger()

MAX_EMAIL_LENGTH = 255
MAX_PREFERENCES_LENGTH = 2000
MAX_FEEDBACK_LENGTH = 2000

FEEDBACK_REQUIRED_FIELDS = ("from", "to")

FEEDBACK_CONFIRMATION_SUBJECT = "Re: Your Daily Newsletter"
FEEDBACK_CONFIRMATION_BODY = (
    "Thanks for your feedback! Your customization will be reflected in "
    "tomorrow's newsletter."
)

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
_REPLY_ADDRESS_RE = re.compile(r"^reply\+([a-f0-9-]+)@", re.IGNORECASE)
_SIGNATURE_LINES = frozenset({"Sent from my iPhone", "Sent from my Android device"})


def validate_email(value: Any, payload: dict[str, Any] | None = None) -> str:
    """Return the trimmed, lowercased address or raise ``ValidationError``."""
    payload = payload or {}
    email = str(value or "").strip().lower()
    if not email:
        raise ValidationError(
            "Email is required",
            missing_fields=["email"],
            available_fields=sorted(payload),
            payload=payload,
        )
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError(
            f"Email is too long (max {MAX_EMAIL_LENGTH} characters)",
            available_fields=sorted(payload),
            payload=payload,
        )
    if not _EMAIL_RE.match(email):
        raise ValidationError(
            "Invalid email format", available_fields=sorted(payload), payload=payload
        )
    return email


def validate_preferences(value: Any, payload: dict[str, Any] | None = None) -> str:
    """Return the preferences with whitespace collapsed, or raise ``ValidationError``."""
    payload = payload or {}
    preferences = " ".join(str(value or "").split())
    if not preferences:
        raise ValidationError(
            "Prompt is required",
            missing_fields=["initialPrompt"],
            available_fields=sorted(payload),
            payload=payload,
        )
    if len(preferences) > MAX_PREFERENCES_LENGTH:
        raise ValidationError(
            f"Prompt is too long (max {MAX_PREFERENCES_LENGTH} characters, "
            f"got {len(preferences)})",
            available_fields=sorted(payload),
            payload=payload,
        )
    return preferences


def clean_reply_body(text: str) -> str:
    """Drop quoted lines and cut at the first signature marker."""
    kept: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(">"):
            continue
        if stripped.startswith(("--", "___")) or stripped in _SIGNATURE_LINES:
            break
        kept.append(line)
    return "\n".join(kept).strip()


def validate_feedback(feedback: str) -> str:
    if not feedback:
        raise ValidationError("Feedback content is empty")
    if len(feedback) > MAX_FEEDBACK_LENGTH:
        raise ValidationError(
            f"Feedback is too long (max {MAX_FEEDBACK_LENGTH} characters, got {len(feedback)})"
        )
    return feedback


def extract_subscriber_id(to_address: str) -> str | None:
    """Return the subscriber id encoded in a ``reply+<id>@domain`` address."""
    match = _REPLY_ADDRESS_RE.match(extract_email_address(to_address))
    return match.group(1).lower() if match else None


@dataclass(frozen=True)
class SignupResult:
    subscriber: NewsletterSubscriber
    created: bool

    @property
    def message(self) -> str:
        if self.created:
            return "Success! Your first newsletter arrives tomorrow."
        return (
            "Welcome back! We've updated your preferences. "
            "Your next newsletter arrives tomorrow."
        )


class NewsletterSignup:
    """Subscribe addresses and record their reply feedback.

    Args:
        store: Subscriber and feedback persistence.
        sender: Delivery path for feedback confirmations.
        from_address: Address confirmations are sent from.
        service_domain: Domain used when a reply carries no Message-ID.
    """

    def __init__(
        self,
        *,
        store: UsageStore,
        sender: SendGridSender,
        from_address: str,
        service_domain: str,
    ) -> None:
        self._store = store
        self._sender = sender
        self._from_address = from_address
        self._service_domain = service_domain

    async def subscribe(self, payload: dict[str, Any]) -> SignupResult:
        """Validate a signup body and store the subscriber.

        Args:
            payload: JSON body with ``email`` and ``initialPrompt``.

        Raises:
            ValidationError: When the address or the prompt is invalid.
        """
        email = validate_email(payload.get("email"), payload)
        preferences = validate_preferences(payload.get("initialPrompt"), payload)

        existing = await asyncio.to_thread(self._store.get_newsletter_subscriber, email)
        subscriber = await asyncio.to_thread(
            self._store.add_newsletter_subscriber, email, preferences
        )
        result = SignupResult(subscriber=subscriber, created=existing is None)
        logger.info(
            "newsletter_signup_completed",
            subscriber_id=subscriber.id,
            email=email,
            created=result.created,
        )
        return result

    async def record_feedback(self, fields: dict[str, Any]) -> NewsletterSubscriber:
        """Store the feedback carried by a reply to a newsletter.

        The subscriber is found by the id in the ``reply+<id>@`` address, then
        by sender address.  An unknown sender is subscribed with the feedback
        as their interests.

        Raises:
            ValidationError: When ``from`` or ``to`` is missing, or the cleaned
                feedback is empty or too long.
        """
        missing = [
            name for name in FEEDBACK_REQUIRED_FIELDS if not str(fields.get(name) or "").strip()
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                missing_fields=missing,
                available_fields=sorted(fields),
                payload=fields,
            )

        sender_email = extract_email_address(str(fields["from"])).lower()
        subscriber_id = extract_subscriber_id(str(fields["to"]))
        message_id = extract_message_id(str(fields.get("headers") or ""), self._service_domain)
        feedback = validate_feedback(clean_reply_body(str(fields.get("text") or "")))
        log = logger.bind(email=sender_email, message_id=message_id)

        subscriber = None
        if subscriber_id:
            subscriber = await asyncio.to_thread(
                self._store.get_newsletter_subscriber_by_id, subscriber_id
            )
            if subscriber is not None and subscriber.email != sender_email:
                log.warning("newsletter_feedback_address_mismatch", subscriber_id=subscriber_id)
                subscriber = None
        if subscriber is None:
            subscriber = await asyncio.to_thread(
                self._store.get_newsletter_subscriber, sender_email
            )

        if subscriber is None:
            subscriber = await asyncio.to_thread(
                self._store.add_newsletter_subscriber, sender_email, feedback
            )
            log.info("newsletter_subscriber_created_from_reply", subscriber_id=subscriber.id)
        else:
            await asyncio.to_thread(self._store.add_newsletter_feedback, subscriber.id, feedback)
            log.info(
                "newsletter_feedback_recorded",
                subscriber_id=subscriber.id,
                length=len(feedback),
            )

        confirmation = OutgoingEmail(
            from_email=self._from_address,
            to_email=sender_email,
            subject=FEEDBACK_CONFIRMATION_SUBJECT,
            body=FEEDBACK_CONFIRMATION_BODY,
            in_reply_to=message_id,
            references=(message_id,),
        )
        try:
            await self._sender.send(confirmation)
        except Exception:
            log.exception("newsletter_feedback_confirmation_failed")
        return subscriber
