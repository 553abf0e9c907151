"""
Reconciliation of match passes with the stored match set.

A fresh pass may change why a post matched, but it must never discard what
the user did with it: a "replied"/"skipped" status or a draft survives every
merge. All identity is by the composite ``platform:id`` key.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Iterable

from ..core.types import MATCH_STATUSES, MatchResult, post_key

logger = logging.getLogger(__name__)


def merge_matches(
    existing: Iterable[MatchResult],
    incoming: Iterable[MatchResult],
    cap: int,
) -> list[MatchResult]:
    """Merge a new pass into the stored results.

    For a post present in both, the incoming score, reason and keywords win
    while status and draft come from the stored entry; stored suggestions and
    tone are kept when the incoming result has none. Stored entries without
    an incoming counterpart survive only if they have left "pending". The
    result is sorted by score (stable) and truncated to ``cap``.

    Merging a set with itself returns an equal set.
    """
    existing_by_key: dict[str, MatchResult] = {}
    for match in existing:
        existing_by_key[match.key] = match

    merged: list[MatchResult] = []
    seen: set[str] = set()
    for new in incoming:
        key = new.key
        if key in seen:
            continue
        seen.add(key)
        old = existing_by_key.pop(key, None)
        if old is None:
            merged.append(new)
            continue
        merged.append(
            replace(
                new,
                status=old.status,
                draft_reply=old.draft_reply,
                reply_suggestions=(
                    new.reply_suggestions if new.reply_suggestions is not None else old.reply_suggestions
                ),
                tone=new.tone if new.tone is not None else old.tone,
            )
        )

    retained = 0
    for old in existing_by_key.values():
        if old.status != "pending":
            merged.append(old)
            retained += 1

    merged.sort(key=lambda m: m.score, reverse=True)
    logger.debug("Merged %d results (%d acted-on retained), cap %d", len(merged), retained, cap)
    return merged[:cap]


def update_match_status(
    matches: Iterable[MatchResult],
    post_id: str,
    platform: str,
    status: str,
    draft_reply: str | None = None,
) -> list[MatchResult]:
    """Set the status (and optionally the draft) of one post, in place.

    Raises:
        ValueError: If ``status`` is not a known match status
    """
    if status not in MATCH_STATUSES:
        raise ValueError(f"Invalid match status: {status}")
    target = post_key(platform, post_id)
    result = list(matches)
    for match in result:
        if match.key == target:
            match.status = status
            if draft_reply is not None:
                match.draft_reply = draft_reply
    return result


def filter_by_status(matches: Iterable[MatchResult], status: str) -> list[MatchResult]:
    return [m for m in matches if m.status == status]


@dataclass
class MatchStats:
    total: int = 0
    pending: int = 0
    replied: int = 0
    skipped: int = 0
    average_score: float = 0.0


def match_stats(matches: Iterable[MatchResult]) -> MatchStats:
    stats = MatchStats()
    total_score = 0.0
    for match in matches:
        stats.total += 1
        total_score += match.score
        if match.status == "pending":
            stats.pending += 1
        elif match.status == "replied":
            stats.replied += 1
        elif match.status == "skipped":
            stats.skipped += 1
    stats.average_score = total_score / stats.total if stats.total else 0.0
    return stats
