"""
Core domain models and runtime state.

This package contains data types and process-wide state that are
independent of any specific pipeline stage.
"""

from .context import CacheEntry, Clock, RateLimiterState, RuntimeContext, SystemClock, TTLCache
from .types import (
    CandidatePost,
    Enclosure,
    FeedDocument,
    FeedItem,
    MatchPass,
    MatchResult,
    ModelDescriptor,
    ModelPricing,
    ReplySuggestion,
    ToneClassification,
    post_key,
)

__all__ = [
    "CacheEntry",
    "CandidatePost",
    "Clock",
    "Enclosure",
    "FeedDocument",
    "FeedItem",
    "MatchPass",
    "MatchResult",
    "ModelDescriptor",
    "ModelPricing",
    "RateLimiterState",
    "ReplySuggestion",
    "RuntimeContext",
    "SystemClock",
    "TTLCache",
    "ToneClassification",
    "post_key",
]
