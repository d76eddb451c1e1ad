"""Domain types, models, and errors for the LLMBox pipeline."""

from llmbox.domain.errors import (
    DeliveryError,
    ExternalServiceError,
    InvalidTransitionError,
    LLMBoxError,
    ValidationError,
)
from llmbox.domain.models import (
    CostBreakdown,
    NewsletterSubscriber,
    QuotaDecision,
    TokenUsage,
    UsageLogEntry,
    UsageSummary,
    User,
)
from llmbox.domain.types import (
    TIER_COST_LIMITS,
    BlockReason,
    ErrorKind,
    PipelineState,
    SubscriptionStatus,
    Tier,
)

__all__ = [
    "TIER_COST_LIMITS",
    "BlockReason",
    "CostBreakdown",
    "DeliveryError",
    "ErrorKind",
    "ExternalServiceError",
    "InvalidTransitionError",
    "LLMBoxError",
    "NewsletterSubscriber",
    "PipelineState",
    "QuotaDecision",
    "SubscriptionStatus",
    "Tier",
    "TokenUsage",
    "UsageLogEntry",
    "UsageSummary",
    "User",
    "ValidationError",
]
