"""Static price table used to estimate Anthropic cost from token counts.

These are list prices, not billing data. Any figure computed here is an
estimate and is flagged as such on the returned record.
"""

from __future__ import annotations

# Pricing per 1M tokens (USD)
PRICING = {
    "claude-opus-4": {"input": 15.0, "output": 75.0},
    "claude-sonnet-4": {"input": 3.0, "output": 15.0},
    "claude-3-7-sonnet": {"input": 3.0, "output": 15.0},
    "claude-3-5-sonnet": {"input": 3.0, "output": 15.0},
    "claude-3-5-haiku": {"input": 0.80, "output": 4.0},
    "claude-haiku-4": {"input": 1.0, "output": 5.0},
}

# Used when the model is unknown or the upstream did not group by model.
DEFAULT_PRICING = {"input": 3.0, "output": 15.0}


def get_pricing(model: str | None) -> dict:
    """Look up pricing for a model (exact match or prefix match)."""
    if not model:
        return DEFAULT_PRICING
    model_lower = model.lower()
    if model_lower in PRICING:
        return PRICING[model_lower]
    # Prefix match (e.g., "claude-sonnet-4-20250514" matches "claude-sonnet-4")
    for known_model, prices in PRICING.items():
        if model_lower.startswith(known_model):
            return prices
    return DEFAULT_PRICING


def estimate_cost(model: str | None, tokens_in: int, tokens_out: int) -> float:
    """Estimate cost in USD for a token count."""
    pricing = get_pricing(model)
    input_cost = (tokens_in / 1_000_000) * pricing["input"]
    output_cost = (tokens_out / 1_000_000) * pricing["output"]
    return input_cost + output_cost
