"""
Match passes: keyword scoring, AI matching and reconciliation.
"""

from .orchestrator import AIMatchOrchestrator, MatchPreferences
from .reconciler import filter_by_status, match_stats, merge_matches, update_match_status
from .scorer import keyword_match_posts, match_reason, rescore_matches, score_post

__all__ = [
    "AIMatchOrchestrator",
    "MatchPreferences",
    "filter_by_status",
    "keyword_match_posts",
    "match_reason",
    "match_stats",
    "merge_matches",
    "rescore_matches",
    "score_post",
    "update_match_status",
]
