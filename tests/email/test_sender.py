"""Tests for the SendGrid sender using httpx.MockTransport."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from llmbox.domain.errors import DeliveryError
from llmbox.domain.types import ErrorKind
from llmbox.email.models import OutgoingEmail
from llmbox.email.sender import SENDGRID_API_URL, SendGridSender, build_payload
from llmbox.resilience.retry import RetryPolicy


@pytest.fixture
def outgoing() -> OutgoingEmail:
    return OutgoingEmail(
        from_email="assistant@llmbox.pro",
        to_email="ada@example.com",
        subject="Re: Poem please",
        body="Roses are red",
        in_reply_to="<CAF123@mail.example.com>",
        references=("<CAF100@mail.example.com>", "<CAF123@mail.example.com>"),
    )


def _sender(
    responses: list[httpx.Response],
    requests: list[httpx.Request],
    policy: RetryPolicy,
    sleep: AsyncMock,
) -> SendGridSender:
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return queue.pop(0)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SendGridSender("SG.test-key", policy, client=client, sleep=sleep)


class TestBuildPayload:
    """SendGrid v3 payload shape."""

    def test_threading_headers_in_personalization(self, outgoing: OutgoingEmail) -> None:
        payload = build_payload(outgoing)

        personalization = payload["personalizations"][0]
        assert personalization["to"] == [{"email": "ada@example.com"}]
        assert personalization["subject"] == "Re: Poem please"
        assert personalization["headers"] == {
            "In-Reply-To": "<CAF123@mail.example.com>",
            "References": "<CAF100@mail.example.com> <CAF123@mail.example.com>",
        }
        assert payload["from"] == {"email": "assistant@llmbox.pro"}
        assert payload["content"] == [{"type": "text/plain", "value": "Roses are red"}]

    def test_standalone_email_has_no_headers(self) -> None:
        email = OutgoingEmail(
            from_email="news@llmbox.pro", to_email="a@b.com", subject="Daily", body="Hi"
        )

        assert "headers" not in build_payload(email)["personalizations"][0]


class TestSend:
    """Status handling and retry behaviour."""

    @pytest.mark.anyio()
    async def test_accepted_returns_provider_id(
        self, outgoing: OutgoingEmail, fast_policy: RetryPolicy, no_sleep: AsyncMock
    ) -> None:
        requests: list[httpx.Request] = []
        sender = _sender(
            [httpx.Response(202, headers={"X-Message-Id": "sg-1"})],
            requests,
            fast_policy,
            no_sleep,
        )

        assert await sender.send(outgoing) == "sg-1"

        assert len(requests) == 1
        assert str(requests[0].url) == SENDGRID_API_URL
        assert requests[0].headers["Authorization"] == "Bearer SG.test-key"
        assert json.loads(requests[0].content)["from"] == {"email": "assistant@llmbox.pro"}
        await sender.aclose()

    @pytest.mark.anyio()
    async def test_server_error_retried_then_accepted(
        self, outgoing: OutgoingEmail, fast_policy: RetryPolicy, no_sleep: AsyncMock
    ) -> None:
        requests: list[httpx.Request] = []
        sender = _sender(
            [httpx.Response(503), httpx.Response(429), httpx.Response(202)],
            requests,
            fast_policy,
            no_sleep,
        )

        await sender.send(outgoing)

        assert len(requests) == 3
        await sender.aclose()

    @pytest.mark.anyio()
    async def test_persistent_500_raises_delivery_error(
        self, outgoing: OutgoingEmail, fast_policy: RetryPolicy, no_sleep: AsyncMock
    ) -> None:
        requests: list[httpx.Request] = []
        sender = _sender([httpx.Response(500)] * 3, requests, fast_policy, no_sleep)

        with pytest.raises(DeliveryError) as exc_info:
            await sender.send(outgoing)

        assert exc_info.value.kind == ErrorKind.SEND_FAILURE
        assert exc_info.value.status_code == 500
        assert len(requests) == 3
        await sender.aclose()

    @pytest.mark.anyio()
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failure_not_retried(
        self,
        outgoing: OutgoingEmail,
        fast_policy: RetryPolicy,
        no_sleep: AsyncMock,
        status: int,
    ) -> None:
        requests: list[httpx.Request] = []
        sender = _sender([httpx.Response(status)], requests, fast_policy, no_sleep)

        with pytest.raises(DeliveryError) as exc_info:
            await sender.send(outgoing)

        assert exc_info.value.cause.kind == ErrorKind.AUTH_FAILURE
        assert len(requests) == 1
        await sender.aclose()

    @pytest.mark.anyio()
    async def test_bad_request_not_retried(
        self, outgoing: OutgoingEmail, fast_policy: RetryPolicy, no_sleep: AsyncMock
    ) -> None:
        requests: list[httpx.Request] = []
        sender = _sender(
            [httpx.Response(400, text="invalid from")], requests, fast_policy, no_sleep
        )

        with pytest.raises(DeliveryError):
            await sender.send(outgoing)

        assert len(requests) == 1
        no_sleep.assert_not_awaited()
        await sender.aclose()

    @pytest.mark.anyio()
    async def test_network_error_is_retried(
        self, outgoing: OutgoingEmail, fast_policy: RetryPolicy, no_sleep: AsyncMock
    ) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(202)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sender = SendGridSender("SG.test-key", fast_policy, client=client, sleep=no_sleep)

        await sender.send(outgoing)

        assert attempts == 2
        await sender.aclose()


class TestClientTimeout:
    """The default client waits as long as the policy allows per attempt."""

    @pytest.mark.anyio()
    async def test_default_client_uses_policy_timeout(self) -> None:
        sender = SendGridSender("SG.test-key", RetryPolicy(max_attempts=1, timeout=10.0))

        assert sender._client.timeout == httpx.Timeout(10.0)
        await sender.aclose()

