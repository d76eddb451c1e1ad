"""Sentry SDK initialization with structlog-sentry bridge.

Provides:
- ``init_sentry(dsn, environment)``: Initialize Sentry SDK.  No-op when
  *dsn* is empty.
- ``get_sentry_processor()``: Return a structlog processor that forwards
  ERROR-level log events (provider auth failures, exhausted sends) to Sentry.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor

# Event fields that may hold email content; never shipped to Sentry.
_SCRUBBED_FIELDS = ("body", "body_preview", "email_body", "full_payload")


def _scrub_email_content(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """Drop email bodies from the event's extra data before it leaves the process."""
    extra = event.get("extra")
    if isinstance(extra, dict):
        for field in _SCRUBBED_FIELDS:
            if field in extra:
                extra[field] = "[scrubbed]"
    return event


def init_sentry(dsn: str, environment: str = "development") -> bool:
    """Initialize Sentry SDK with the given *dsn*.

    Args:
        dsn: Sentry DSN string.  Empty string disables Sentry.
        environment: Environment tag attached to every event.

    Returns:
        ``True`` when Sentry was initialized.
    """
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=_scrub_email_content,
        integrations=[
            # structlog-sentry does the capturing; avoid double-reporting.
            LoggingIntegration(event_level=None, level=None),
        ],
    )
    return True


def get_sentry_processor() -> structlog.types.Processor:
    """Return a structlog processor that forwards ERROR events to Sentry.

    Returns:
        A ``SentryProcessor`` instance configured for ERROR-level capture.
    """
    return SentryProcessor(event_level=logging.ERROR)
