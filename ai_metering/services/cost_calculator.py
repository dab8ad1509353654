"""
Server-side cost calculation for AI model usage.

Two concerns live here because both turn raw provider numbers into money:
  • calculate_cost() — provider cost in USD from token counts, used when an
    AI entry point reports tokens but not a measured cost.
  • usd_to_eur()     — the user-facing EUR figure: cost × margin × FX rate.

Decimal is used everywhere to avoid floating-point rounding on money.
Prices are hardcoded (OpenRouter list prices) and documented so they can be
replaced by a database lookup.
"""

from decimal import ROUND_HALF_UP, Decimal

from ai_metering.core.config import settings

# ── Pricing table ───────────────────────────────────────────
# Per-1M-token prices in USD.
#
# Format: model_name -> { "input": Decimal, "output": Decimal }

MODEL_PRICING: dict[str, dict[str, Decimal]] = {
    # OpenAI
    "openai/gpt-4o": {
        "input": Decimal("2.50"),
        "output": Decimal("10.00"),
    },
    "openai/gpt-4o-mini": {
        "input": Decimal("0.15"),
        "output": Decimal("0.60"),
    },
    # Anthropic
    "anthropic/claude-3.5-sonnet": {
        "input": Decimal("3.00"),
        "output": Decimal("15.00"),
    },
    "anthropic/claude-3-haiku": {
        "input": Decimal("0.25"),
        "output": Decimal("1.25"),
    },
    # Google
    "google/gemini-flash-1.5": {
        "input": Decimal("0.075"),
        "output": Decimal("0.30"),
    },
    "google/gemini-pro-1.5": {
        "input": Decimal("1.25"),
        "output": Decimal("5.00"),
    },
    # Meta (Llama-hosted)
    "meta-llama/llama-3.1-70b-instruct": {
        "input": Decimal("0.52"),
        "output": Decimal("0.75"),
    },
    "meta-llama/llama-3.1-8b-instruct": {
        "input": Decimal("0.055"),
        "output": Decimal("0.055"),
    },
}

_ONE_MILLION = Decimal("1000000")
_CENT = Decimal("0.01")


def get_supported_models() -> list[str]:
    """Return a sorted list of model names with known pricing."""
    return sorted(MODEL_PRICING.keys())


def calculate_cost(
    model_name: str,
    input_tokens: int,
    output_tokens: int,
) -> Decimal:
    """
    Calculate the USD provider cost of an AI call.

    Args:
        model_name:    Identifier matching a key in MODEL_PRICING.
        input_tokens:  Number of prompt tokens (>= 0).
        output_tokens: Number of completion tokens (>= 0).

    Returns:
        Exact Decimal cost in USD.

    Raises:
        ValueError: If model_name is not in the pricing table.
    """
    pricing = MODEL_PRICING.get(model_name)
    if pricing is None:
        supported = ", ".join(get_supported_models())
        raise ValueError(
            f"Unknown model '{model_name}'. "
            f"Supported models: {supported}"
        )

    input_cost = (Decimal(input_tokens) / _ONE_MILLION) * pricing["input"]
    output_cost = (Decimal(output_tokens) / _ONE_MILLION) * pricing["output"]

    return input_cost + output_cost


def usd_to_eur(cost_usd: Decimal) -> Decimal:
    """
    Convert raw provider cost to the user-facing EUR amount.

    Applies the resale margin and the fixed FX rate, then rounds half-up
    to whole cents.
    """
    eur = Decimal(cost_usd) * settings.MARGIN_MULTIPLIER * settings.USD_TO_EUR_RATE
    return eur.quantize(_CENT, rounding=ROUND_HALF_UP)
