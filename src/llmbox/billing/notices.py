"""Plain-text notices sent instead of a generated reply when access is blocked."""

from __future__ import annotations

from urllib.parse import quote

from llmbox.billing.pricing import format_cost, format_usage_percentage
from llmbox.domain.models import User
from llmbox.domain.types import BlockReason, Tier

LIMIT_EXCEEDED_SUBJECT = "You've reached your LLMBox {plan} limit"
SUBSCRIPTION_INACTIVE_SUBJECT = "Your LLMBox subscription needs attention"

PLAN_NAMES = {
    Tier.FREE: "free tier",
    Tier.PRO: "Pro plan",
    Tier.MAX: "Max plan",
}

UPGRADE_PROMPTS = {
    Tier.FREE: "To keep the conversation going, you'll need to upgrade to one of our paid plans.",
    Tier.PRO: (
        "To keep the conversation going before your next billing cycle, "
        "upgrade to the Max plan."
    ),
    # Max has no higher plan.
    Tier.MAX: (
        "Your limit resets at the start of your next billing cycle. "
        "Reply to this email if you need a higher limit."
    ),
}

LIMIT_EXCEEDED_BODY = """You've Maxed Out Your {plan_title}!

Hi there,

You've been using LLMBox so much that you've hit your usage limit.

YOUR USAGE:
- Plan: {plan_title}
- Total Cost: {cost_used}
- Limit: {cost_limit}
- Used: {percent_used}
- Email: {email}

{upgrade_prompt}

PLANS AND PRICING:
{pricing_url}

Thanks for being an LLMBox user!

Best,
The LLMBox Team

---
Have questions? Just reply to this email.
Visit: {web_app_url}"""

SUBSCRIPTION_INACTIVE_BODY = """Your LLMBox Subscription Needs Attention

Hi there,

Your LLMBox subscription is currently inactive.
Status: {status}

We couldn't process your payment, or your subscription may have been cancelled.

To continue using LLMBox, please update your payment method or reactivate your subscription.

UPDATE BILLING:
{billing_url}

If you have questions or need help, just reply to this email.

Best,
The LLMBox Team"""


def limit_exceeded_notice(user: User, web_app_url: str) -> tuple[str, str]:
    """Return the subject and body of the limit notice for *user*, worded for their tier."""
    base = web_app_url.rstrip("/")
    plan = PLAN_NAMES.get(user.tier, PLAN_NAMES[Tier.FREE])
    body = LIMIT_EXCEEDED_BODY.format(
        plan_title=plan.title(),
        upgrade_prompt=UPGRADE_PROMPTS.get(user.tier, UPGRADE_PROMPTS[Tier.FREE]),
        cost_used=format_cost(user.cost_used_usd),
        cost_limit=format_cost(user.cost_limit_usd),
        percent_used=format_usage_percentage(user.cost_used_usd, user.cost_limit_usd),
        email=user.email,
        pricing_url=f"{base}/pricing?email={quote(user.email, safe='')}",
        web_app_url=base,
    )
    return LIMIT_EXCEEDED_SUBJECT.format(plan=plan), body


def subscription_inactive_notice(user: User, web_app_url: str) -> tuple[str, str]:
    """Return the subject and body of the billing notice for *user*."""
    base = web_app_url.rstrip("/")
    body = SUBSCRIPTION_INACTIVE_BODY.format(
        status=user.subscription_status or "Inactive",
        billing_url=f"{base}/billing?email={quote(user.email, safe='')}",
    )
    return SUBSCRIPTION_INACTIVE_SUBJECT, body


def build_block_notice(reason: BlockReason, user: User, web_app_url: str) -> tuple[str, str]:
    """Pick the notice matching why the quota gate refused the request."""
    if reason == BlockReason.SUBSCRIPTION_INACTIVE:
        return subscription_inactive_notice(user, web_app_url)
    return limit_exceeded_notice(user, web_app_url)
