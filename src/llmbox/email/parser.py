"""Inbound webhook submission parsing.

Provides helpers for:
- Validating the multipart field set posted by the inbound-parse transport
- Extracting RFC 5322 threading headers from the raw header block
- Normalizing ``"Display Name" <addr>`` style address fields
"""

from __future__ import annotations

import re
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from llmbox.domain.errors import ValidationError
from llmbox.email.models import IncomingEmail

REQUIRED_FIELDS: tuple[str, ...] = ("from", "to", "subject", "text", "headers")

# Header names are matched at line start so lookalikes such as
# X-Original-Message-ID or Resent-Message-ID never win.
_MESSAGE_ID_RE = re.compile(
    r"^Message-ID:[ \t]*(?:\r?\n[ \t]+)?(<[^>]+>)", re.IGNORECASE | re.MULTILINE
)
_IN_REPLY_TO_RE = re.compile(
    r"^In-Reply-To:[ \t]*(?:\r?\n[ \t]+)?(<[^>]+>)", re.IGNORECASE | re.MULTILINE
)
# Value plus any folded continuation lines, which start with whitespace.
_REFERENCES_RE = re.compile(
    r"^References:[ \t]*(.*(?:\r?\n[ \t]+.*)*)", re.IGNORECASE | re.MULTILINE
)
_BRACKETED_ADDRESS_RE = re.compile(r"<([^>]+)>")


def extract_email_address(raw: str) -> str:
    """Return the bare address from ``"Name" <addr>`` or a plain address string."""
    match = _BRACKETED_ADDRESS_RE.search(raw)
    if match:
        return match.group(1).strip()
    return raw.strip()


def extract_message_id(headers: str, service_domain: str) -> str:
    """Extract the ``Message-ID`` header, synthesizing one when absent.

    Args:
        headers: The raw header block.
        service_domain: Domain used for the synthesized ID.

    Returns:
        The bracketed Message-ID, or ``<{unix_millis}@{service_domain}>``.
    """
    match = _MESSAGE_ID_RE.search(headers)
    if match:
        return match.group(1)
    return f"<{int(time.time() * 1000)}@{service_domain}>"


def extract_in_reply_to(headers: str) -> str | None:
    """Extract the ``In-Reply-To`` header, or ``None`` when absent."""
    match = _IN_REPLY_TO_RE.search(headers)
    return match.group(1) if match else None


def extract_references(headers: str) -> tuple[str, ...]:
    """Split the ``References`` header into Message-IDs, oldest first."""
    match = _REFERENCES_RE.search(headers)
    if not match:
        return ()
    return tuple(ref for ref in match.group(1).split() if ref)


def _describe_field(value: Any) -> str:
    # Uploaded parts (attachments) only contribute their filename to diagnostics.
    filename = getattr(value, "filename", None)
    if filename is not None and not isinstance(value, str):
        return f"[File: {filename}]"
    return str(value)


def parse_incoming_email(fields: Mapping[str, Any], service_domain: str) -> IncomingEmail:
    """Validate a webhook field set and build an ``IncomingEmail``.

    Args:
        fields: The multipart form fields (``from``, ``to``, ``subject``,
            ``text``, ``headers`` are required).
        service_domain: Domain used when a Message-ID must be synthesized.

    Returns:
        The parsed, immutable ``IncomingEmail``.

    Raises:
        ValidationError: If any required field is missing or empty.  The
            error lists exactly the missing fields plus the full field set.
    """
    missing = [name for name in REQUIRED_FIELDS if not fields.get(name)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            missing_fields=missing,
            available_fields=list(fields.keys()),
            payload={key: _describe_field(value) for key, value in fields.items()},
        )

    headers = str(fields["headers"])
    return IncomingEmail(
        from_email=extract_email_address(str(fields["from"])),
        to_email=extract_email_address(str(fields["to"])),
        subject=str(fields["subject"]),
        body=str(fields["text"]),
        message_id=extract_message_id(headers, service_domain),
        in_reply_to=extract_in_reply_to(headers),
        references=extract_references(headers),
        timestamp=datetime.now(tz=UTC).isoformat(),
    )
