"""Scheduled newsletter run over all active subscribers.

Subscribers are processed in batches of ``batch_size`` concurrently.  A
failure for one subscriber is logged and counted; it never aborts the batch
or the run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime

import structlog

from llmbox.billing.ledger import UsageLedger
from llmbox.domain.models import NewsletterSubscriber, TokenUsage
from llmbox.email.models import OutgoingEmail
from llmbox.email.sender import SendGridSender
from llmbox.llm.generator import ResponseGenerator
from llmbox.newsletter.generator import generate_newsletter, newsletter_subject
from llmbox.observability.metrics import REPLIES_SENT
from llmbox.store.sqlite import UsageStore

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 10


@dataclass(frozen=True)
class NewsletterStats:
    """Counts reported by one newsletter run."""

    total: int
    succeeded: int
    failed: int
    duration_ms: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
        }


class NewsletterRunner:
    """Generate and send the daily newsletter to every active subscriber.

    Args:
        store: Source of subscribers and sink for email logs.
        generator: Shared completion path.
        ledger: Quota gate and usage accounting, shared with replies.
        sender: Shared delivery path.
        from_address: Address newsletters are sent from.
        service_domain: Domain used for newsletter Message-IDs in usage logs.
        batch_size: Subscribers processed concurrently per batch.
        today: Callable returning the newsletter date; injectable for tests.
    """

    def __init__(
        self,
        *,
        store: UsageStore,
        generator: ResponseGenerator,
        ledger: UsageLedger,
        sender: SendGridSender,
        from_address: str,
        service_domain: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        today: Callable[[], date] = lambda: datetime.now(tz=UTC).date(),
    ) -> None:
        self._store = store
        self._generator = generator
        self._ledger = ledger
        self._sender = sender
        self._from_address = from_address
        self._service_domain = service_domain
        self._batch_size = batch_size
        self._today = today

    async def run(self) -> NewsletterStats:
        """Process every active subscriber and return the run's counts."""
        start = time.monotonic()
        subscribers = await asyncio.to_thread(self._store.list_active_newsletter_subscribers)
        logger.info("newsletter_run_started", subscribers=len(subscribers))

        today = self._today()
        succeeded = 0
        for offset in range(0, len(subscribers), self._batch_size):
            batch = subscribers[offset : offset + self._batch_size]
            results = await asyncio.gather(*(self._process(sub, today) for sub in batch))
            succeeded += sum(1 for ok in results if ok)

        stats = NewsletterStats(
            total=len(subscribers),
            succeeded=succeeded,
            failed=len(subscribers) - succeeded,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info("newsletter_run_completed", **stats.to_dict())
        return stats

    async def _process(self, subscriber: NewsletterSubscriber, today: date) -> bool:
        log = logger.bind(subscriber_id=subscriber.id, email=subscriber.email)
        if not subscriber.preferences.strip():
            log.error("newsletter_no_preferences")
            return False

        try:
            decision = await self._ledger.check_quota(subscriber.email)
            if not decision.allowed:
                log.warning("newsletter_quota_blocked", reason=decision.reason)
                return False

            feedback = await asyncio.to_thread(
                self._store.list_newsletter_feedback, subscriber.id
            )
            response = await generate_newsletter(self._generator, subscriber, today, feedback)
            message_id = (
                f"<newsletter-{today.isoformat()}-{subscriber.id}@{self._service_domain}>"
            )
            try:
                await self._ledger.track_usage(
                    user=decision.user,
                    message_id=message_id,
                    model=response.model,
                    usage=TokenUsage(
                        prompt_tokens=response.prompt_tokens,
                        completion_tokens=response.completion_tokens,
                    ),
                )
            except Exception:
                log.exception("newsletter_usage_tracking_failed")

            outgoing = OutgoingEmail(
                from_email=self._from_address,
                to_email=subscriber.email,
                subject=newsletter_subject(today),
                body=response.content,
            )
            await self._sender.send(outgoing)
            REPLIES_SENT.labels(kind="newsletter").inc()
        except Exception:
            log.exception("newsletter_subscriber_failed")
            return False

        try:
            await asyncio.to_thread(
                self._store.save_email,
                direction="outbound",
                user_id=decision.user.id,
                from_email=outgoing.from_email,
                to_email=outgoing.to_email,
                subject=outgoing.subject,
                body=outgoing.body,
            )
        except Exception:
            log.exception("newsletter_email_log_failed")

        log.info("newsletter_sent", token_count=response.token_count)
        return True
