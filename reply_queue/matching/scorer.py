"""
Deterministic keyword scoring.

This is the zero-cost matching path: no I/O, no failure modes. It also serves
as the fallback when an AI match pass cannot complete.
"""

from __future__ import annotations

from dataclasses import replace
import logging
import re
import time
from typing import Iterable

from ..core.types import CandidatePost, MatchPass, MatchResult

logger = logging.getLogger(__name__)


# Empirically tuned; kept as-is for behavioural compatibility.
KEYWORD_SATURATION = 5
COUNT_WEIGHT = 0.6
QUALITY_WEIGHT = 0.4

_NON_WORD_RE = re.compile(r"[^a-z0-9\s-]")
_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return _WS_RE.sub(" ", _NON_WORD_RE.sub(" ", text.lower())).strip()


def tokenize(text: str) -> list[str]:
    return [word for word in normalize_text(text).split(" ") if len(word) >= 2]


def score_post(post: CandidatePost, keywords: Iterable[str]) -> tuple[float, list[str]]:
    """Score a post against a keyword set.

    An exact phrase hit weighs ``1 + 0.5 * (words - 1)``; otherwise a partial
    hit weighs the fraction of the keyword's words present in the post. The
    score blends how many keywords matched (saturating at five) with the
    average hit weight (capped at one)::

        min(1, matched / 5) * 0.6 + min(1, avg_weight) * 0.4

    Returns:
        ``(score, matched_keywords)`` with score in [0, 1] and keywords in
        discovery order
    """
    keyword_list = list(keywords)
    if not keyword_list:
        return 0.0, []

    post_text = " ".join([post.body_text or "", post.author or "", post.headline or ""])
    normalized_post = normalize_text(post_text)
    post_words = set(tokenize(post_text))

    matched: list[str] = []
    total_weight = 0.0
    for keyword in keyword_list:
        normalized_keyword = normalize_text(keyword)
        if not normalized_keyword:
            continue

        if normalized_keyword in normalized_post:
            matched.append(keyword)
            total_weight += 1 + (len(normalized_keyword.split(" ")) - 1) * 0.5
            continue

        keyword_words = tokenize(keyword)
        if not keyword_words:
            continue
        overlap = [word for word in keyword_words if word in post_words]
        if overlap:
            matched.append(keyword)
            total_weight += len(overlap) / len(keyword_words)

    if not matched:
        return 0.0, matched

    count_score = min(1.0, len(matched) / KEYWORD_SATURATION)
    weight_score = min(1.0, total_weight / len(matched))
    score = min(1.0, count_score * COUNT_WEIGHT + weight_score * QUALITY_WEIGHT)
    return score, matched


def match_reason(matched_keywords: list[str]) -> str:
    """Human-readable explanation of a keyword match."""
    if not matched_keywords:
        return "No specific keywords matched"
    if len(matched_keywords) == 1:
        return f'Matched keyword: "{matched_keywords[0]}"'
    quoted = ", ".join(f'"{k}"' for k in matched_keywords[:3])
    if len(matched_keywords) <= 3:
        return f"Matched keywords: {quoted}"
    return f"Matched {len(matched_keywords)} keywords including: {quoted}"


def keyword_match_posts(
    posts: Iterable[CandidatePost],
    keywords: Iterable[str],
    threshold: float,
    max_posts: int,
    now: float | None = None,
) -> MatchPass:
    """Run a keyword match pass over ``posts``.

    Keywords are scored in sorted order so the discovery order of
    ``matched_keywords`` does not depend on set iteration order.
    """
    started = time.monotonic()
    keyword_list = sorted(set(keywords))
    post_list = list(posts)
    matched_at = time.time() if now is None else now
    logger.info("Matching %d posts against %d keywords", len(post_list), len(keyword_list))

    matches: list[MatchResult] = []
    for post in post_list:
        score, matched = score_post(post, keyword_list)
        if matched and score >= threshold:
            matches.append(
                MatchResult(
                    post=post,
                    score=score,
                    matched_keywords=matched,
                    reason=match_reason(matched),
                    matched_at=matched_at,
                )
            )

    matches.sort(key=lambda m: m.score, reverse=True)
    limited = matches[:max_posts]
    elapsed = time.monotonic() - started
    logger.info("Found %d keyword matches (keeping top %d)", len(matches), len(limited))
    return MatchPass(
        matches=limited,
        total_evaluated=len(post_list),
        keywords=keyword_list,
        processing_seconds=elapsed,
    )


def rescore_matches(
    existing: Iterable[MatchResult],
    keywords: Iterable[str],
    threshold: float,
    max_posts: int,
    now: float | None = None,
) -> MatchPass:
    """Rescore stored matches against a new keyword set.

    Status, draft, suggestions and tone are kept; results falling below
    ``threshold`` are dropped.
    """
    started = time.monotonic()
    keyword_list = sorted(set(keywords))
    existing_list = list(existing)
    matched_at = time.time() if now is None else now

    updated: list[MatchResult] = []
    for match in existing_list:
        score, matched = score_post(match.post, keyword_list)
        if matched and score >= threshold:
            updated.append(
                replace(
                    match,
                    score=score,
                    matched_keywords=matched,
                    reason=match_reason(matched),
                    matched_at=matched_at,
                )
            )

    updated.sort(key=lambda m: m.score, reverse=True)
    return MatchPass(
        matches=updated[:max_posts],
        total_evaluated=len(existing_list),
        keywords=keyword_list,
        processing_seconds=time.monotonic() - started,
    )
