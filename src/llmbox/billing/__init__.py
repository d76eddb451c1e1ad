"""Model pricing, usage accounting and quota enforcement."""

from llmbox.billing.ledger import UsageLedger, is_subscription_active
from llmbox.billing.notices import build_block_notice
from llmbox.billing.pricing import calculate_cost, format_cost, format_usage_percentage

__all__ = [
    "UsageLedger",
    "build_block_notice",
    "calculate_cost",
    "format_cost",
    "format_usage_percentage",
    "is_subscription_active",
]
