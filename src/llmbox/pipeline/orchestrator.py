"""Webhook pipeline: parse, quota gate, generate, compose, send, acknowledge.

Each invocation is an independent unit of work.  Stages run sequentially and
every outcome other than a malformed submission ends in an acknowledgement,
so the at-least-once inbound transport never redelivers (and re-bills) an
email the pipeline already handled.

The sender of an accepted email always receives exactly one reply: the
generated answer, a canned apology, or a quota/subscription notice.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from llmbox.billing.ledger import UsageLedger
from llmbox.billing.notices import build_block_notice
from llmbox.domain.errors import DeliveryError, ExternalServiceError
from llmbox.domain.models import QuotaDecision, TokenUsage
from llmbox.domain.types import ErrorKind, PipelineState
from llmbox.email.models import IncomingEmail, OutgoingEmail
from llmbox.email.parser import parse_incoming_email
from llmbox.email.sender import SendGridSender
from llmbox.email.threading import format_reply
from llmbox.llm.generator import ResponseGenerator
from llmbox.llm.models import LLMResponse
from llmbox.observability.logging import bind_correlation_key, truncate
from llmbox.observability.metrics import REPLIES_SENT, SEND_FAILURES
from llmbox.pipeline.errors import build_error_reply, error_reply_body
from llmbox.pipeline.performance import PerformanceTracker
from llmbox.pipeline.state_machine import PipelineStateMachine
from llmbox.pipeline.transitions import PipelineEvent
from llmbox.store.sqlite import UsageStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one acknowledged invocation."""

    message_id: str
    state: PipelineState
    reply_kind: str
    outgoing: OutgoingEmail
    delivered: bool
    history: list[tuple[PipelineState, str, PipelineState]] = field(default_factory=list)
    durations_ms: dict[str, int] = field(default_factory=dict)


class EmailPipeline:
    """Sequence the pipeline stages for one inbound webhook submission.

    Args:
        generator: Completion API wrapper.
        ledger: Quota gate and usage accounting.
        sender: Delivery API wrapper.
        store: Store used for best-effort email logging; ``None`` disables it.
        service_domain: Domain for synthesized Message-IDs.
        from_address: Address replies are sent from; empty means reply from
            the address the email was sent to.
        web_app_url: Base URL used in pricing and billing links.
    """

    def __init__(
        self,
        *,
        generator: ResponseGenerator,
        ledger: UsageLedger,
        sender: SendGridSender,
        store: UsageStore | None,
        service_domain: str,
        from_address: str,
        web_app_url: str,
    ) -> None:
        self._generator = generator
        self._ledger = ledger
        self._sender = sender
        self._store = store
        self._service_domain = service_domain
        self._from_address = from_address
        self._web_app_url = web_app_url

    async def handle(self, fields: Mapping[str, Any]) -> PipelineResult:
        """Process one webhook submission end to end.

        Args:
            fields: The multipart form fields posted by the transport.

        Returns:
            The acknowledged outcome, including the reply that was composed.

        Raises:
            ValidationError: If required fields are missing.  This is the
                only failure that surfaces to the transport.
        """
        tracker = PerformanceTracker()
        machine = PipelineStateMachine()

        tracker.start("parsing")
        incoming = parse_incoming_email(fields, self._service_domain)
        tracker.end("parsing")
        machine.trigger(PipelineEvent.PARSE)

        bind_correlation_key(incoming.message_id)
        logger.info(
            "email_parsed",
            from_email=incoming.from_email,
            subject=incoming.subject,
            body_preview=truncate(incoming.body),
            in_reply_to=incoming.in_reply_to,
            references_count=len(incoming.references),
        )

        decision: QuotaDecision | None = None
        try:
            decision = await self._check_quota(incoming, machine)
            outgoing, reply_kind = await self._prepare_reply(incoming, decision, machine, tracker)
        except Exception:
            # Unclassified fault before a reply exists: apologise generically.
            logger.exception("pipeline_internal_error", state=machine.state)
            machine.trigger(PipelineEvent.FAIL)
            machine.trigger(PipelineEvent.SELECT_TEMPLATE)
            outgoing = build_error_reply(incoming, None, self._reply_from(incoming))
            reply_kind = "error"
        machine.trigger(PipelineEvent.COMPOSE)

        delivered = await self._send(outgoing, reply_kind, machine, tracker)
        user_id = decision.user.id if decision is not None else None
        await self._record_emails(incoming, outgoing if delivered else None, user_id)

        machine.trigger(PipelineEvent.ACKNOWLEDGE)
        tracker.warn_if_slow()
        logger.info(
            "pipeline_completed",
            reply_kind=reply_kind,
            delivered=delivered,
            final_state=machine.state,
            durations_ms=tracker.summary(),
        )
        return PipelineResult(
            message_id=incoming.message_id,
            state=machine.state,
            reply_kind=reply_kind,
            outgoing=outgoing,
            delivered=delivered,
            history=machine.history,
            durations_ms=tracker.summary(),
        )

    def _reply_from(self, incoming: IncomingEmail) -> str:
        return self._from_address or incoming.to_email

    async def _check_quota(
        self, incoming: IncomingEmail, machine: PipelineStateMachine
    ) -> QuotaDecision:
        decision = await self._ledger.check_quota(incoming.from_email)
        machine.trigger(PipelineEvent.CHECK_QUOTA)
        logger.info(
            "quota_checked",
            user_id=decision.user.id,
            allowed=decision.allowed,
            remaining_budget=str(decision.remaining_budget),
            percent_used=decision.percent_used,
        )
        return decision

    async def _prepare_reply(
        self,
        incoming: IncomingEmail,
        decision: QuotaDecision,
        machine: PipelineStateMachine,
        tracker: PerformanceTracker,
    ) -> tuple[OutgoingEmail, str]:
        reply_from = self._reply_from(incoming)

        if not decision.allowed and decision.reason is not None:
            machine.trigger(PipelineEvent.BLOCK)
            subject, body = build_block_notice(decision.reason, decision.user, self._web_app_url)
            logger.info("quota_notice_selected", reason=decision.reason)
            notice = format_reply(incoming, body, reply_from)
            return notice.model_copy(update={"subject": subject}), "notice"

        machine.trigger(PipelineEvent.ALLOW)
        machine.trigger(PipelineEvent.INVOKE_MODEL)
        tracker.start("llm_call")
        try:
            response = await self._generator.generate(incoming)
        except ExternalServiceError as exc:
            tracker.end("llm_call")
            machine.trigger(PipelineEvent.FAIL)
            machine.trigger(PipelineEvent.SELECT_TEMPLATE)
            logger.warning("error_template_selected", kind=exc.kind)
            return build_error_reply(incoming, exc.kind, reply_from), "error"
        tracker.end("llm_call")
        machine.trigger(PipelineEvent.SUCCEED)

        await self._track_usage(incoming, decision, response)

        if not response.content:
            logger.warning("llm_empty_content", model=response.model)
            body = error_reply_body(ErrorKind.GENERIC_PROVIDER_ERROR)
            return format_reply(incoming, body, reply_from), "error"
        return format_reply(incoming, response.content, reply_from), "answer"

    async def _track_usage(
        self,
        incoming: IncomingEmail,
        decision: QuotaDecision,
        response: LLMResponse,
    ) -> None:
        # Billed as soon as tokens are consumed; a tracking failure must not
        # stop the reply.
        try:
            await self._ledger.track_usage(
                user=decision.user,
                message_id=incoming.message_id,
                model=response.model,
                usage=TokenUsage(
                    prompt_tokens=response.prompt_tokens,
                    completion_tokens=response.completion_tokens,
                ),
            )
        except Exception:
            logger.exception("usage_tracking_failed", user_id=decision.user.id)

    async def _send(
        self,
        outgoing: OutgoingEmail,
        reply_kind: str,
        machine: PipelineStateMachine,
        tracker: PerformanceTracker,
    ) -> bool:
        tracker.start("email_send")
        try:
            await self._sender.send(outgoing)
        except DeliveryError as exc:
            tracker.end("email_send")
            machine.trigger(PipelineEvent.SEND_FAIL)
            SEND_FAILURES.inc()
            # Logged only: emailing the user about a failed email would loop.
            logger.error(
                "reply_send_failed",
                kind=exc.kind,
                status_code=exc.status_code,
                reply_kind=reply_kind,
                error=str(exc.cause),
            )
            return False
        tracker.end("email_send")
        machine.trigger(PipelineEvent.SEND)
        REPLIES_SENT.labels(kind=reply_kind).inc()
        logger.info("reply_sent", reply_kind=reply_kind, to=outgoing.to_email)
        return True

    async def _record_emails(
        self,
        incoming: IncomingEmail,
        outgoing: OutgoingEmail | None,
        user_id: str | None,
    ) -> None:
        if self._store is None:
            return
        try:
            await asyncio.to_thread(
                self._store.save_email,
                direction="inbound",
                user_id=user_id,
                message_id=incoming.message_id,
                in_reply_to=incoming.in_reply_to,
                references=incoming.references,
                from_email=incoming.from_email,
                to_email=incoming.to_email,
                subject=incoming.subject,
                body=incoming.body,
            )
            if outgoing is not None:
                await asyncio.to_thread(
                    self._store.save_email,
                    direction="outbound",
                    user_id=user_id,
                    in_reply_to=outgoing.in_reply_to,
                    references=outgoing.references,
                    from_email=outgoing.from_email,
                    to_email=outgoing.to_email,
                    subject=outgoing.subject,
                    body=outgoing.body,
                )
        except Exception:
            logger.exception("email_log_failed", user_id=user_id)
