"""Static model price table (USD per million tokens).

Estimates use a blended price: every input token is assumed to produce
half an output token, so ``price = input + 0.5 * output``.
"""

from __future__ import annotations

PRICING_PER_MILLION: dict[str, dict[str, float]] = {
    # xAI
    "grok-3-mini": {"input": 0.30, "output": 0.50},
    "grok-3": {"input": 3.00, "output": 15.00},
    "grok-3-reasoning": {"input": 5.00, "output": 25.00},
    "grok-2-vision": {"input": 2.00, "output": 10.00},
    # OpenAI
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "o1": {"input": 15.00, "output": 60.00},
    "o3-mini": {"input": 1.10, "output": 4.40},
    # Anthropic
    "claude-3-haiku": {"input": 0.25, "output": 1.25},
    "claude-3-sonnet": {"input": 3.00, "output": 15.00},
    "claude-3-opus": {"input": 15.00, "output": 75.00},
    # Google
    "gemini-1.5-flash": {"input": 0.075, "output": 0.30},
    "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
}

OUTPUT_RATIO = 0.5


def price_per_million(model: str, pricing_map: dict | None = None) -> float:
    """Blended USD price per million tokens; 0.0 for unknown models."""
    source = pricing_map if pricing_map is not None else PRICING_PER_MILLION
    pricing = source.get(model)
    if pricing is None:
        return 0.0
    return pricing["input"] + OUTPUT_RATIO * pricing["output"]


def calculate_cost(tokens: int, model: str, pricing_map: dict | None = None) -> float:
    """Estimate USD cost: ``tokens / 1e6 * price_per_million``."""
    return tokens / 1_000_000 * price_per_million(model, pricing_map)


def merge_pricing(overrides: dict[str, dict[str, float]]) -> dict[str, dict[str, float]]:
    """Overlay configured prices on the static table."""
    merged = {model: dict(prices) for model, prices in PRICING_PER_MILLION.items()}
    for model, prices in overrides.items():
        merged[model] = {
            "input": float(prices.get("input", 0.0)),
            "output": float(prices.get("output", 0.0)),
        }
    return merged


def most_expensive_model(pricing_map: dict | None = None) -> str:
    source = pricing_map if pricing_map is not None else PRICING_PER_MILLION
    return max(source, key=lambda model: price_per_million(model, source))
