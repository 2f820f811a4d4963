"""
Purpose: Token math & cost estimation.
Central pricing logic so UI/controller do not duplicate calculations.
"""

from typing import Optional

from ..models import Price


PRICE_TABLE = {
    "gpt-4o": Price(2.50, 10.00),
    "gpt-4o-mini": Price(0.15, 0.60),
    "gpt-4.1": Price(2.00, 8.00),
    "gpt-4.1-mini": Price(0.40, 1.60),
    "gpt-image-1": Price(5.00, 40.00),
}


def price_for(model: Optional[str]) -> Price:
    """
    Exact match first, then the longest table key the model id starts with,
    so dated snapshots ("gpt-4o-2024-08-06") price like their family.
    """
    if not model:
        return Price(0.0, 0.0)
    if model in PRICE_TABLE:
        return PRICE_TABLE[model]
    prefixes = [k for k in PRICE_TABLE if model.startswith(k + "-")]
    if not prefixes:
        return Price(0.0, 0.0)
    return PRICE_TABLE[max(prefixes, key=len)]


def estimate_cost(model: Optional[str], tokens_in: int, tokens_out: int) -> float:
    p = price_for(model)
    return (tokens_in / 1000000) * p.input_per_1M + (
        tokens_out / 1000000
    ) * p.output_per_1M


def estimate_tokens_from_text(text: str) -> int:
    """Fast heuristic: ~4 chars per token."""
    t = (text or "").strip()
    if not t:
        return 0

    return (len(t) + 3) // 4
