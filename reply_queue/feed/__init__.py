"""
Feed ingestion: parsing, keyword extraction and fetching.
"""

from .fetcher import derive_blog_url, fetch_feed, fetch_feed_with_cache, validate_feed_url
from .keywords import extract_keywords, extract_significant_words
from .parser import parse_feed

__all__ = [
    "parse_feed",
    "extract_keywords",
    "extract_significant_words",
    "fetch_feed",
    "fetch_feed_with_cache",
    "validate_feed_url",
    "derive_blog_url",
]
