"""Pydantic v2 models for users, usage and billing results."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from llmbox.domain.types import BlockReason, Tier


class User(BaseModel):
    """A service user, created lazily on the first email from an address."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    tier: Tier = Tier.FREE
    cost_used_usd: Decimal = Decimal("0")
    cost_limit_usd: Decimal = Decimal("1.00")
    subscription_status: str | None = None
    created_at: str = ""
    updated_at: str = ""


class TokenUsage(BaseModel):
    """Token breakdown for one billed model call."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        """Return prompt plus completion tokens."""
        return self.prompt_tokens + self.completion_tokens


class CostBreakdown(BaseModel):
    """Cost of one model call in USD, each leg quantized to 6 places."""

    model_config = ConfigDict(frozen=True)

    input_cost: Decimal
    output_cost: Decimal
    total_cost: Decimal


class UsageLogEntry(BaseModel):
    """One append-only row per billed model call."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    message_id: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str
    cost_usd: Decimal


class QuotaDecision(BaseModel):
    """Outcome of the pre-call quota gate."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    user: User
    remaining_budget: Decimal
    percent_used: float
    reason: BlockReason | None = None


class UsageSummary(BaseModel):
    """Totals returned after usage has been recorded."""

    model_config = ConfigDict(frozen=True)

    user: User
    cost: CostBreakdown
    new_total_cost: Decimal
    remaining_budget: Decimal


class NewsletterSubscriber(BaseModel):
    """A recipient of the scheduled newsletter and their stated interests."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    preferences: str = ""
    active: bool = True
    created_at: str = ""
