"""Keyword extraction from a parsed feed for zero-cost matching."""

from __future__ import annotations

from collections import Counter
import re

from ..core.types import FeedDocument


STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by from up about into over after
    is are was were be been being have has had do does did will would could should
    may might this that these those it its they them their we our you your i my me
    he she his her what which who when where why how all each both few more most
    other some such no not only own same so than too very just can now also get got
    like make made new one
    """.split()
)

BODY_KEYWORDS_PER_ITEM = 10

_NON_WORD_RE = re.compile(r"[^a-z0-9\s-]")
_NUMERIC_RE = re.compile(r"^\d+$")


def extract_significant_words(text: str) -> list[str]:
    """Return significant words of ``text`` ordered by frequency.

    Words are lower-cased, at least three characters, not stop words and not
    purely numeric. Ties keep first-occurrence order.
    """
    words = [
        word
        for word in _NON_WORD_RE.sub(" ", text.lower()).split()
        if len(word) >= 3 and word not in STOP_WORDS and not _NUMERIC_RE.match(word)
    ]
    counts = Counter(words)
    return [word for word, _ in counts.most_common()]


def extract_keywords(doc: FeedDocument) -> set[str]:
    """Derive the keyword set of a feed.

    Collects every category (lower-cased), every significant title word and
    the ten most frequent significant words of each item's body.
    """
    keywords: set[str] = set()
    for item in doc.items:
        for category in item.categories:
            if category.strip():
                keywords.add(category.strip().lower())
        keywords.update(extract_significant_words(item.title))
        if item.body:
            keywords.update(extract_significant_words(item.body)[:BODY_KEYWORDS_PER_ITEM])
    return keywords
