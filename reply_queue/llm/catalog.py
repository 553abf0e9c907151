"""Model catalog helpers: pricing tiers, age and filtering.

Catalog prices are published per token. Display and filtering work on the
blended price per one million tokens, the mean of prompt and completion
prices.
"""

from __future__ import annotations

import time
from typing import Iterable

from rapidfuzz import fuzz

from ..core.types import ModelDescriptor, ModelPricing


TOKENS_PER_PRICE_UNIT = 1_000_000
FUZZY_SEARCH_THRESHOLD = 80
SECONDS_PER_DAY = 86_400


def blended_price(pricing: ModelPricing) -> float:
    """Mean of prompt and completion price, in USD per 1M tokens."""
    return (pricing.prompt + pricing.completion) / 2 * TOKENS_PER_PRICE_UNIT


def cost_tier(price_per_million: float) -> str:
    if price_per_million <= 0.5:
        return "$"
    if price_per_million <= 2.0:
        return "$$"
    return "$$$"


def model_age_days(model: ModelDescriptor, now: float | None = None) -> int | None:
    """Whole days since release, or None when the catalog gave no date."""
    if not model.released_at:
        return None
    now = time.time() if now is None else now
    return max(0, int((now - model.released_at) // SECONDS_PER_DAY))


def matches_query(model: ModelDescriptor, query: str) -> bool:
    """Substring match on id, name or description, else a fuzzy match on id/name.

    Fuzzy matching uses rapidfuzz's partial ratio so small typos such as
    "clade haiku" still find "Claude Haiku".
    """
    needle = query.strip().lower()
    if not needle:
        return True
    fields = [model.id.lower(), model.display_name.lower(), (model.description or "").lower()]
    if any(needle in field for field in fields):
        return True
    return any(fuzz.partial_ratio(needle, field) >= FUZZY_SEARCH_THRESHOLD for field in fields[:2])


def filter_models(
    models: Iterable[ModelDescriptor],
    max_price: float | None = None,
    max_age_days: int | None = None,
    search_query: str | None = None,
    now: float | None = None,
) -> list[ModelDescriptor]:
    """Filter and sort a catalog: recommended first, then cheapest.

    Models without a release date are never excluded by ``max_age_days``.
    """
    selected: list[ModelDescriptor] = []
    for model in models:
        if max_price is not None and blended_price(model.pricing) > max_price:
            continue
        if max_age_days is not None:
            age = model_age_days(model, now)
            if age is not None and age > max_age_days:
                continue
        if search_query and not matches_query(model, search_query):
            continue
        selected.append(model)

    selected.sort(key=lambda m: (not m.is_recommended, blended_price(m.pricing)))
    return selected


def recommended_models(models: Iterable[ModelDescriptor]) -> list[ModelDescriptor]:
    return [m for m in models if m.is_recommended]


def find_model(models: Iterable[ModelDescriptor], model_id: str) -> ModelDescriptor | None:
    for model in models:
        if model.id == model_id:
            return model
    return None
