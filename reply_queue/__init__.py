"""
ReplyQueue - find social posts worth replying to with your blog content.

This package parses a blog's RSS/Atom feed, scores candidate social posts
against it (by keywords or through an OpenRouter-compatible completion API)
and keeps a reconciled queue of matches with reply suggestions.

Main entry point is the CLI via `reply-queue` commands.

Example:
    $ reply-queue match https://example.com/feed.xml --posts posts.json --mode ai
"""

__all__ = [
    "__version__",
    "parse_feed",
    "extract_keywords",
    "score_post",
    "merge_matches",
    "AIMatchOrchestrator",
    "OpenRouterClient",
    "ReplyQueueService",
]
__version__ = "0.1.0"

from .feed.keywords import extract_keywords
from .feed.parser import parse_feed
from .llm.client import OpenRouterClient
from .matching.orchestrator import AIMatchOrchestrator
from .matching.reconciler import merge_matches
from .matching.scorer import score_post
from .service import ReplyQueueService
