"""Usage ledger: pre-call quota gate and post-call usage tracking.

The quota check and the later increment are two separate store calls, so
concurrent emails from one user can both pass the gate before either is
billed.  The overshoot is bounded by one call per concurrent request and is
accepted rather than serialized here.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import structlog

from llmbox.billing.pricing import calculate_cost, quantize_usd
from llmbox.domain.models import QuotaDecision, TokenUsage, UsageLogEntry, UsageSummary, User
from llmbox.domain.types import BlockReason, SubscriptionStatus, Tier
from llmbox.observability.metrics import COST_USD
from llmbox.store.sqlite import UsageStore

logger = structlog.get_logger()

WARNING_THRESHOLD_PERCENT = 80.0

_ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


def is_subscription_active(user: User) -> bool:
    """Free users are always active; paid users need an active or trialing subscription."""
    if user.tier == Tier.FREE:
        return True
    return user.subscription_status in _ACTIVE_STATUSES


def percent_used(used: Decimal, limit: Decimal) -> float:
    """Return spend as a percentage of the ceiling, rounded to one decimal."""
    if limit <= 0:
        return 100.0
    return round(float(used / limit * 100), 1)


class UsageLedger:
    """Quota enforcement and cost accounting on top of ``UsageStore``."""

    def __init__(self, store: UsageStore) -> None:
        self._store = store

    async def check_quota(self, email: str) -> QuotaDecision:
        """Decide whether *email* may trigger a model call.

        Fetches or creates the user, then allows the call only while budget
        remains and the subscription is active.

        Args:
            email: Sender address of the inbound email.

        Returns:
            The decision with the user, remaining budget and usage percentage.
        """
        user = await asyncio.to_thread(self._store.get_or_create_user, email)
        remaining = quantize_usd(user.cost_limit_usd - user.cost_used_usd)
        used_pct = percent_used(user.cost_used_usd, user.cost_limit_usd)

        reason: BlockReason | None = None
        if not is_subscription_active(user):
            reason = BlockReason.SUBSCRIPTION_INACTIVE
            logger.warning(
                "subscription_inactive",
                user_id=user.id,
                tier=user.tier,
                subscription_status=user.subscription_status,
            )
        elif remaining <= 0:
            reason = BlockReason.QUOTA_EXCEEDED
            logger.warning(
                "user_limit_exceeded",
                user_id=user.id,
                cost_used=str(user.cost_used_usd),
                cost_limit=str(user.cost_limit_usd),
            )
        elif used_pct >= WARNING_THRESHOLD_PERCENT:
            logger.warning(
                "user_approaching_limit",
                user_id=user.id,
                percent_used=used_pct,
                remaining_budget=str(remaining),
            )

        return QuotaDecision(
            allowed=reason is None,
            user=user,
            remaining_budget=remaining,
            percent_used=used_pct,
            reason=reason,
        )

    async def track_usage(
        self,
        *,
        user: User,
        message_id: str,
        model: str,
        usage: TokenUsage,
    ) -> UsageSummary:
        """Record one billed call and increment the user's running spend.

        Runs as soon as tokens are consumed, whether or not the reply is
        later delivered.

        Args:
            user: The user being billed.
            message_id: Correlation key of the inbound email.
            model: Model identifier echoed by the completion API.
            usage: Token counts for the call.

        Returns:
            The cost of this call and the user's updated totals.
        """
        cost = calculate_cost(model, usage)
        entry = UsageLogEntry(
            user_id=user.id,
            email=user.email,
            message_id=message_id,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            model=model,
            cost_usd=cost.total_cost,
        )
        await asyncio.to_thread(self._store.insert_usage_log, entry)
        updated = await asyncio.to_thread(
            self._store.update_user_cost_usage, user.id, cost.total_cost
        )
        COST_USD.inc(float(cost.total_cost))

        remaining = quantize_usd(updated.cost_limit_usd - updated.cost_used_usd)
        logger.info(
            "usage_tracked",
            user_id=user.id,
            model=model,
            total_tokens=usage.total_tokens,
            cost=str(cost.total_cost),
            new_total_cost=str(updated.cost_used_usd),
            remaining_budget=str(remaining),
        )
        return UsageSummary(
            user=updated,
            cost=cost,
            new_total_cost=updated.cost_used_usd,
            remaining_budget=remaining,
        )
