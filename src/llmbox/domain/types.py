"""Domain enumerations shared across the request-processing pipeline."""

from decimal import Decimal
from enum import StrEnum


class Tier(StrEnum):
    """Billing tiers a user can belong to."""

    FREE = "free"
    PRO = "pro"
    MAX = "max"


class SubscriptionStatus(StrEnum):
    """Subscription states reported by the payment provider."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class ErrorKind(StrEnum):
    """Failure taxonomy used to pick a reply template and a log level."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    AUTH_FAILURE = "auth_failure"
    REFUSAL = "refusal"
    GENERIC_PROVIDER_ERROR = "generic_provider_error"
    VALIDATION_ERROR = "validation_error"
    SEND_FAILURE = "send_failure"


class BlockReason(StrEnum):
    """Why a quota check refused a request."""

    QUOTA_EXCEEDED = "quota_exceeded"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"


class PipelineState(StrEnum):
    """States a single webhook invocation moves through."""

    RECEIVED = "received"
    PARSED = "parsed"
    QUOTA_CHECKED = "quota_checked"
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    MODEL_INVOKED = "model_invoked"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERROR_TEMPLATE_SELECTED = "error_template_selected"
    COMPOSED = "composed"
    SENT = "sent"
    SEND_FAILED = "send_failed"
    ACKNOWLEDGED = "acknowledged"


# Tier ceilings on cumulative model spend, in USD.
TIER_COST_LIMITS: dict[Tier, Decimal] = {
    Tier.FREE: Decimal("1.00"),
    Tier.PRO: Decimal("16.00"),
    Tier.MAX: Decimal("100.00"),
}
