"""End-to-end tests for EmailPipeline with mocked completion and delivery APIs."""

from __future__ import annotations

import json
import sqlite3
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from llmbox.billing.ledger import UsageLedger
from llmbox.billing.notices import LIMIT_EXCEEDED_SUBJECT
from llmbox.domain.errors import ValidationError
from llmbox.domain.types import PipelineState
from llmbox.email.sender import SendGridSender
from llmbox.llm.generator import ResponseGenerator
from llmbox.pipeline.errors import GENERIC_ERROR_BODY, PROVIDER_ERROR_BODY, RATE_LIMITED_BODY
from llmbox.pipeline.orchestrator import EmailPipeline
from llmbox.resilience.retry import RetryPolicy
from llmbox.store.sqlite import UsageStore

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _message(text: str = "Roses are red, violets are blue") -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        model="claude-haiku-4-5-20251001",
        stop_reason="end_turn",
        usage=SimpleNamespace(input_tokens=1_000, output_tokens=500, server_tool_use=None),
    )


def _status_error(cls: type[anthropic.APIStatusError], status: int) -> anthropic.APIStatusError:
    return cls(f"HTTP {status}", response=httpx.Response(status, request=_REQUEST), body=None)


class Harness:
    """Pipeline wired to an in-memory store and mocked provider APIs."""

    def __init__(
        self,
        store: UsageStore,
        create: AsyncMock,
        send_statuses: list[int] | None = None,
        *,
        ledger: UsageLedger | None = None,
        from_address: str = "assistant@llmbox.pro",
    ) -> None:
        self.create = create
        self.requests: list[httpx.Request] = []
        statuses = list(send_statuses or [202])

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(statuses.pop(0) if len(statuses) > 1 else statuses[0])

        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        client = MagicMock()
        client.messages.create = create
        generator = ResponseGenerator(
            client,
            model="claude-haiku-4-5",
            max_tokens=2000,
            temperature=0.7,
            enable_web_search=False,
            policy=policy,
            sleep=AsyncMock(),
        )
        self.sender = SendGridSender(
            "SG.test-key",
            policy,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            sleep=AsyncMock(),
        )
        self.pipeline = EmailPipeline(
            generator=generator,
            ledger=ledger or UsageLedger(store),
            sender=self.sender,
            store=store,
            service_domain="llmbox.pro",
            from_address=from_address,
            web_app_url="https://llmbox.ai",
        )

    def sent_payload(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


class TestSuccessfulReply:
    """A fresh user gets a threaded model answer."""

    @pytest.mark.anyio()
    async def test_fresh_user_receives_answer(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message()))

        result = await harness.pipeline.handle(webhook_fields)

        assert result.state == PipelineState.ACKNOWLEDGED
        assert result.reply_kind == "answer"
        assert result.delivered is True
        assert result.message_id == "<CAF123@mail.example.com>"
        assert result.outgoing.subject == "Re: Poem please"
        assert result.outgoing.in_reply_to == "<CAF123@mail.example.com>"
        assert result.outgoing.references[-1] == "<CAF123@mail.example.com>"
        assert result.outgoing.body == "Roses are red, violets are blue"

        payload = harness.sent_payload()
        assert payload["personalizations"][0]["to"] == [{"email": "ada@example.com"}]
        assert payload["personalizations"][0]["headers"]["In-Reply-To"] == (
            "<CAF123@mail.example.com>"
        )
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_usage_billed_and_emails_logged(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message()))

        await harness.pipeline.handle(webhook_fields)

        user = store.get_or_create_user("ada@example.com")
        logs = store.list_usage_logs(user.id)
        assert len(logs) == 1
        assert logs[0].message_id == "<CAF123@mail.example.com>"
        assert user.cost_used_usd == Decimal("0.003500")
        assert store.count_emails("inbound") == 1
        assert store.count_emails("outbound") == 1
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_history_follows_happy_path(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message()))

        result = await harness.pipeline.handle(webhook_fields)

        assert [event for _, event, _ in result.history] == [
            "parse",
            "check_quota",
            "allow",
            "invoke_model",
            "succeed",
            "compose",
            "send",
            "acknowledge",
        ]
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_empty_from_address_replies_from_recipient(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message()), from_address="")

        result = await harness.pipeline.handle(webhook_fields)

        assert result.outgoing.from_email == "assistant@llmbox.pro"
        await harness.sender.aclose()


class TestQuotaGate:
    """Blocked users get a notice and no model call."""

    @pytest.mark.anyio()
    async def test_user_at_limit_gets_notice(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        user = store.get_or_create_user("ada@example.com")
        store.update_user_cost_usage(user.id, Decimal("1.00"))
        create = AsyncMock(return_value=_message())
        harness = Harness(store, create)

        result = await harness.pipeline.handle(webhook_fields)

        create.assert_not_awaited()
        assert result.reply_kind == "notice"
        assert result.delivered is True
        assert result.outgoing.subject == LIMIT_EXCEEDED_SUBJECT.format(plan="free tier")
        assert result.outgoing.in_reply_to == "<CAF123@mail.example.com>"
        assert "https://llmbox.ai/pricing?email=ada%40example.com" in result.outgoing.body
        assert store.list_usage_logs(user.id) == []
        assert store.get_user_by_id(user.id).cost_used_usd == Decimal("1.00")
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_quota_check_failure_fails_closed(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        ledger = MagicMock(spec=UsageLedger)
        ledger.check_quota = AsyncMock(side_effect=RuntimeError("database is locked"))
        create = AsyncMock(return_value=_message())
        harness = Harness(store, create, ledger=ledger)

        result = await harness.pipeline.handle(webhook_fields)

        create.assert_not_awaited()
        assert result.reply_kind == "error"
        assert result.outgoing.body == GENERIC_ERROR_BODY
        assert result.outgoing.subject == "Re: Poem please"
        assert result.state == PipelineState.ACKNOWLEDGED
        await harness.sender.aclose()


class TestModelFailures:
    """Completion API failures become threaded apologies."""

    @pytest.mark.anyio()
    async def test_rate_limit_retried_then_answered(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        create = AsyncMock(
            side_effect=[
                _status_error(anthropic.RateLimitError, 429),
                _status_error(anthropic.RateLimitError, 429),
                _message(),
            ]
        )
        harness = Harness(store, create)

        result = await harness.pipeline.handle(webhook_fields)

        assert create.await_count == 3
        assert result.reply_kind == "answer"
        assert result.delivered is True
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_rate_limit_exhausted_sends_apology(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        create = AsyncMock(side_effect=_status_error(anthropic.RateLimitError, 429))
        harness = Harness(store, create)

        result = await harness.pipeline.handle(webhook_fields)

        assert create.await_count == 3
        assert result.reply_kind == "error"
        assert result.outgoing.body == RATE_LIMITED_BODY
        assert result.delivered is True
        user = store.get_or_create_user("ada@example.com")
        assert store.list_usage_logs(user.id) == []
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_auth_failure_sends_provider_apology(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        create = AsyncMock(side_effect=_status_error(anthropic.AuthenticationError, 401))
        harness = Harness(store, create)

        result = await harness.pipeline.handle(webhook_fields)

        assert create.await_count == 1
        assert result.outgoing.body == PROVIDER_ERROR_BODY
        assert "fail" in [event for _, event, _ in result.history]
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_empty_content_billed_with_fallback_reply(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message("   ")))

        result = await harness.pipeline.handle(webhook_fields)

        assert result.reply_kind == "error"
        assert result.outgoing.body == PROVIDER_ERROR_BODY
        user = store.get_or_create_user("ada@example.com")
        assert len(store.list_usage_logs(user.id)) == 1
        await harness.sender.aclose()


class TestDelivery:
    """Send failures are logged, never retried by redelivery."""

    @pytest.mark.anyio()
    async def test_persistent_send_failure_still_acknowledged(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message()), send_statuses=[500])

        result = await harness.pipeline.handle(webhook_fields)

        assert result.delivered is False
        assert result.state == PipelineState.ACKNOWLEDGED
        assert len(harness.requests) == 3
        assert [event for _, event, _ in result.history][-2:] == ["send_fail", "acknowledge"]
        assert store.count_emails("inbound") == 1
        assert store.count_emails("outbound") == 0
        user = store.get_or_create_user("ada@example.com")
        assert len(store.list_usage_logs(user.id)) == 1
        await harness.sender.aclose()


class TestBestEffortRecording:
    """Usage and email-log write failures are logged; the reply still goes out."""

    @pytest.mark.anyio()
    @pytest.mark.parametrize("method", ["insert_usage_log", "update_user_cost_usage"])
    async def test_usage_write_failure_still_answers(
        self, store: UsageStore, webhook_fields: dict[str, str], method: str
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message()))

        with patch.object(
            store, method, side_effect=sqlite3.OperationalError("database is locked")
        ):
            result = await harness.pipeline.handle(webhook_fields)

        assert result.reply_kind == "answer"
        assert result.delivered is True
        assert result.state == PipelineState.ACKNOWLEDGED
        assert len(harness.requests) == 1
        await harness.sender.aclose()

    @pytest.mark.anyio()
    async def test_email_log_failure_still_acknowledged(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        harness = Harness(store, AsyncMock(return_value=_message()))

        with patch.object(
            store, "save_email", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            result = await harness.pipeline.handle(webhook_fields)

        assert result.reply_kind == "answer"
        assert result.delivered is True
        assert result.state == PipelineState.ACKNOWLEDGED
        assert store.count_emails() == 0
        user = store.get_or_create_user("ada@example.com")
        assert len(store.list_usage_logs(user.id)) == 1
        await harness.sender.aclose()


class TestValidation:
    @pytest.mark.anyio()
    async def test_missing_fields_raise_before_any_call(
        self, store: UsageStore, webhook_fields: dict[str, str]
    ) -> None:
        create = AsyncMock(return_value=_message())
        harness = Harness(store, create)
        del webhook_fields["text"]

        with pytest.raises(ValidationError) as exc_info:
            await harness.pipeline.handle(webhook_fields)

        assert exc_info.value.missing_fields == ["text"]
        create.assert_not_awaited()
        assert harness.requests == []
        await harness.sender.aclose()
