"""Shared pytest fixtures for the LLMBox test suite."""

from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from llmbox.email.models import IncomingEmail
from llmbox.resilience.retry import RetryPolicy
from llmbox.store.sqlite import UsageStore, init_db


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio, the event loop the code targets."""
    return "asyncio"


@pytest.fixture
def raw_headers() -> str:
    """A representative raw header block from the inbound-parse transport."""
    return (
        "Received: from mail.example.com\r\n"
        "Message-ID: <CAF123@mail.example.com>\r\n"
        "In-Reply-To: <CAF100@mail.example.com>\r\n"
        "References: <CAF099@mail.example.com>\r\n"
        " <CAF100@mail.example.com>\r\n"
        "Subject: Poem please\r\n"
    )


@pytest.fixture
def webhook_fields(raw_headers: str) -> dict[str, str]:
    """A complete multipart field set for one inbound email."""
    return {
        "from": "Ada Lovelace <ada@example.com>",
        "to": "assistant@llmbox.pro",
        "subject": "Poem please",
        "text": "Write me a poem",
        "headers": raw_headers,
    }


@pytest.fixture
def incoming_email() -> IncomingEmail:
    """A parsed inbound email that continues an existing thread."""
    return IncomingEmail(
        from_email="ada@example.com",
        to_email="assistant@llmbox.pro",
        subject="Poem please",
        body="Write me a poem",
        message_id="<CAF123@mail.example.com>",
        in_reply_to="<CAF100@mail.example.com>",
        references=("<CAF099@mail.example.com>", "<CAF100@mail.example.com>"),
        timestamp="2026-10-18T09:00:00+00:00",
    )


@pytest.fixture
def store() -> Iterator[UsageStore]:
    """An in-memory store with the free-tier default limit."""
    usage_store = UsageStore(init_db(":memory:"), free_tier_limit=Decimal("1.00"))
    yield usage_store
    usage_store.close()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """The default 3-attempt policy without a per-attempt timeout."""
    return RetryPolicy(max_attempts=3, base_delay=1.0)


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Awaitable sleep stand-in that records requested delays."""
    return AsyncMock()
