"""
Completion API access.

This package contains the resilient OpenRouter client, model catalog
helpers, parsing of model replies and optional Langfuse tracing.
"""

from .catalog import blended_price, cost_tier, filter_models, find_model, model_age_days, recommended_models
from .client import OpenRouterClient
from .parsing import ParsedMatch, extract_json_object, parse_match_response, parse_suggestions, parse_tone_response

__all__ = [
    "OpenRouterClient",
    "ParsedMatch",
    "blended_price",
    "cost_tier",
    "extract_json_object",
    "filter_models",
    "find_model",
    "model_age_days",
    "parse_match_response",
    "parse_suggestions",
    "parse_tone_response",
    "recommended_models",
]
