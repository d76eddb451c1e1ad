"""Tests for domain models and error classes."""

from __future__ import annotations

from decimal import Decimal

import pydantic
import pytest

from llmbox.domain.errors import (
    DeliveryError,
    ExternalServiceError,
    InvalidTransitionError,
    ValidationError,
)
from llmbox.domain.models import TokenUsage, User
from llmbox.domain.types import ErrorKind, PipelineState, Tier


class TestUser:
    def test_defaults(self) -> None:
        user = User(id="u1", email="ada@example.com")

        assert user.tier == Tier.FREE
        assert user.cost_used_usd == Decimal("0")
        assert user.cost_limit_usd == Decimal("1.00")

    def test_frozen(self) -> None:
        user = User(id="u1", email="ada@example.com")

        with pytest.raises(pydantic.ValidationError):
            user.tier = Tier.PRO  # type: ignore[misc]


class TestTokenUsage:
    def test_total(self) -> None:
        assert TokenUsage(prompt_tokens=120, completion_tokens=80).total_tokens == 200

    def test_negative_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            TokenUsage(prompt_tokens=-1)


class TestErrors:
    def test_validation_error_context(self) -> None:
        exc = ValidationError(
            "Missing required fields: text",
            missing_fields=["text"],
            available_fields=["from"],
            payload={"from": "a@b.com"},
        )

        assert exc.kind == ErrorKind.VALIDATION_ERROR
        assert exc.context == {
            "missingFields": ["text"],
            "availableFields": ["from"],
            "fullPayload": {"from": "a@b.com"},
        }

    def test_external_error_message(self) -> None:
        exc = ExternalServiceError(ErrorKind.RATE_LIMITED, service="anthropic", status_code=429)

        assert str(exc) == "anthropic rate_limited: rate_limited"
        assert exc.is_critical is False

    def test_delivery_error_wraps_cause(self) -> None:
        cause = ExternalServiceError(ErrorKind.AUTH_FAILURE, service="sendgrid", status_code=401)

        exc = DeliveryError(cause)

        assert exc.kind == ErrorKind.SEND_FAILURE
        assert exc.cause is cause
        assert exc.status_code == 401
        assert exc.service == "sendgrid"

    def test_invalid_transition_message(self) -> None:
        exc = InvalidTransitionError(PipelineState.BLOCKED, "invoke_model")

        assert "invoke_model" in str(exc)
        assert "blocked" in str(exc)
