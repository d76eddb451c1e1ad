"""Reply composition and RFC 5322 threading header management.

Provides helpers for:
- Normalizing Message-IDs to carry angle brackets
- Prefixing ``Re: `` exactly once
- Building the ``References`` chain for a reply
"""

from __future__ import annotations

from llmbox.email.models import IncomingEmail, OutgoingEmail


def ensure_angle_brackets(message_id: str) -> str:
    """Wrap *message_id* in ``<...>`` unless it already is."""
    stripped = message_id.strip()
    if stripped.startswith("<") and stripped.endswith(">"):
        return stripped
    return f"<{stripped.strip('<>')}>"


def reply_subject(subject: str) -> str:
    """Return *subject* with a single ``Re: `` prefix.

    The check is case-insensitive, so ``RE: hello`` and ``re: hello`` are
    returned unchanged.
    """
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


def build_references(incoming: IncomingEmail) -> tuple[str, ...]:
    """Return the incoming references plus the incoming Message-ID.

    Every entry is normalized to carry angle brackets, so the chain grows by
    exactly one entry per reply.
    """
    chain = [*incoming.references, incoming.message_id]
    return tuple(ensure_angle_brackets(ref) for ref in chain)


def format_reply(incoming: IncomingEmail, body: str, from_email: str) -> OutgoingEmail:
    """Build the threaded reply to *incoming*.

    Args:
        incoming: The email being answered.
        body: The reply text (generated answer, error template, or notice).
        from_email: The service address the reply is sent from.

    Returns:
        An ``OutgoingEmail`` addressed to the original sender, threaded
        under the original message.
    """
    return OutgoingEmail(
        from_email=from_email,
        to_email=incoming.from_email,
        subject=reply_subject(incoming.subject),
        body=body,
        in_reply_to=ensure_angle_brackets(incoming.message_id),
        references=build_references(incoming),
    )
