"""Per-model token pricing and cost calculation.

All monetary values are ``Decimal`` quantized to 6 places with
``ROUND_HALF_UP``.  Pricing lookup never fails: an unrecognized model falls
back to the cheapest table entry.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

import structlog

from llmbox.domain.models import CostBreakdown, TokenUsage

logger = structlog.get_logger()

MICRO_DOLLAR = Decimal("0.000001")
TOKENS_PER_MILLION = Decimal(1_000_000)


class ModelPrice(NamedTuple):
    """USD price per million tokens for each leg of a call."""

    input_per_million: Decimal
    output_per_million: Decimal


# Ordered: the first key contained in the model name wins, so more specific
# prefixes must come before the families they belong to.
PRICING_TABLE: dict[str, ModelPrice] = {
    "claude-opus-4-5": ModelPrice(Decimal("5.00"), Decimal("25.00")),
    "claude-opus-4": ModelPrice(Decimal("15.00"), Decimal("75.00")),
    "claude-sonnet-4": ModelPrice(Decimal("3.00"), Decimal("15.00")),
    "claude-3-7-sonnet": ModelPrice(Decimal("3.00"), Decimal("15.00")),
    "claude-haiku-4": ModelPrice(Decimal("1.00"), Decimal("5.00")),
    "claude-3-5-haiku": ModelPrice(Decimal("0.80"), Decimal("4.00")),
    "claude-3-haiku": ModelPrice(Decimal("0.25"), Decimal("1.25")),
}

DEFAULT_PRICE: ModelPrice = min(
    PRICING_TABLE.values(), key=lambda price: price.input_per_million + price.output_per_million
)


def quantize_usd(value: Decimal) -> Decimal:
    """Round *value* to 6 decimal places, half up."""
    return value.quantize(MICRO_DOLLAR, rounding=ROUND_HALF_UP)


def get_model_price(model: str) -> ModelPrice:
    """Return the price entry for *model*, or the cheapest entry if none matches."""
    normalized = model.lower()
    for key, price in PRICING_TABLE.items():
        if key in normalized:
            return price
    logger.warning("model_pricing_not_found", model=model, fallback="cheapest")
    return DEFAULT_PRICE


def calculate_cost(model: str, usage: TokenUsage) -> CostBreakdown:
    """Compute the USD cost of one call.

    Args:
        model: Model identifier echoed by the completion API.
        usage: Prompt and completion token counts.

    Returns:
        Input, output and total cost, each rounded to 6 decimal places.
    """
    price = get_model_price(model)
    input_cost = quantize_usd(
        Decimal(usage.prompt_tokens) / TOKENS_PER_MILLION * price.input_per_million
    )
    output_cost = quantize_usd(
        Decimal(usage.completion_tokens) / TOKENS_PER_MILLION * price.output_per_million
    )
    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=quantize_usd(input_cost + output_cost),
    )


def format_cost(cost_usd: Decimal) -> str:
    """Format a USD amount with 2 to 6 decimal places, e.g. ``$0.001234``."""
    text = f"{quantize_usd(cost_usd):,.6f}"
    whole, _, fraction = text.partition(".")
    fraction = fraction.rstrip("0").ljust(2, "0")
    sign = "-" if whole.startswith("-") else ""
    return f"{sign}${whole.lstrip('-')}.{fraction}"


def format_usage_percentage(used: Decimal, limit: Decimal) -> str:
    """Format *used* as a percentage of *limit* with one decimal, e.g. ``85.0%``."""
    if limit <= 0:
        return "100.0%"
    percentage = (used / limit * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{percentage}%"
