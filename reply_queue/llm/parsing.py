"""Parsing of free-form model replies into structured results.

Model output is untrusted text. Each parser locates the first JSON object in
the reply (a fenced ```json block wins if present), validates the expected
shape and drops individual entries that do not conform. A reply with no
usable JSON yields None so callers can tell "could not parse" apart from
"parsed, nothing matched".
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Mapping

from ..core.types import TONES, CandidatePost, ToneClassification

logger = logging.getLogger(__name__)


DEFAULT_MATCH_REASON = "AI-matched post"
DEFAULT_TONE_REASON = "Analyzed by AI"


@dataclass
class ParsedMatch:
    """One validated entry of a matching reply."""

    post: CandidatePost
    score: float
    reason: str
    suggestions: list[str] = field(default_factory=list)


def extract_json_object(content: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in ``content``, or None.

    Candidates are found by scanning for balanced braces, skipping braces
    inside string literals, so trailing prose or a second object after the
    first one does not break parsing.
    """
    if not content:
        return None

    fence = _extract_fenced_json(content)
    if fence:
        parsed = _loads_object(fence)
        if parsed is not None:
            return parsed

    start = content.find("{")
    while start != -1:
        end = _balanced_end(content, start)
        if end != -1:
            parsed = _loads_object(content[start : end + 1])
            if parsed is not None:
                return parsed
        start = content.find("{", start + 1)
    return None


def parse_match_response(
    content: str,
    batch: Mapping[str, CandidatePost],
) -> list[ParsedMatch] | None:
    """Parse a matching reply against the posts of the batch it answers.

    Args:
        content: Raw model reply
        batch: Posts sent in the prompt, by composite key

    Returns:
        Validated entries in reply order, or None if the reply holds no
        JSON object with a ``results`` array
    """
    data = extract_json_object(content)
    if data is None:
        logger.warning("No JSON found in AI response")
        return None
    results = data.get("results")
    if not isinstance(results, list):
        logger.warning("Invalid AI response format - no results array")
        return None

    lookup = _post_lookup(batch)
    parsed: list[ParsedMatch] = []
    seen: set[str] = set()
    for entry in results:
        if not isinstance(entry, dict):
            continue
        post = lookup.get(str(entry.get("postId", "")))
        if post is None or post.key in seen:
            logger.debug("Dropping AI result with unknown postId: %r", entry.get("postId"))
            continue
        score = entry.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            logger.debug("Dropping AI result for %s with non-numeric score", post.key)
            continue
        reason = entry.get("reason")
        suggestions = entry.get("suggestions")
        seen.add(post.key)
        parsed.append(
            ParsedMatch(
                post=post,
                score=min(1.0, max(0.0, float(score))),
                reason=reason if isinstance(reason, str) and reason.strip() else DEFAULT_MATCH_REASON,
                suggestions=[s for s in suggestions if isinstance(s, str) and s.strip()]
                if isinstance(suggestions, list)
                else [],
            )
        )
    return parsed


def parse_tone_response(
    content: str,
    batch: Mapping[str, CandidatePost],
) -> dict[str, ToneClassification] | None:
    """Parse a heat check reply into classifications by composite key.

    Unknown tones become "neutral"; ``recommended`` is true only for a JSON
    ``true``.
    """
    data = extract_json_object(content)
    if data is None:
        logger.warning("No JSON found in heat check response")
        return None
    results = data.get("results")
    if not isinstance(results, list):
        logger.warning("Invalid heat check response format - no results array")
        return None

    lookup = _post_lookup(batch)
    tones: dict[str, ToneClassification] = {}
    for entry in results:
        if not isinstance(entry, dict):
            continue
        post = lookup.get(str(entry.get("postId", "")))
        if post is None:
            continue
        tone = entry.get("tone")
        reason = entry.get("reason")
        tones[post.key] = ToneClassification(
            tone=tone if tone in TONES else "neutral",
            reason=reason if isinstance(reason, str) and reason.strip() else DEFAULT_TONE_REASON,
            recommended=entry.get("recommended") is True,
        )
    return tones


def parse_suggestions(content: str) -> list[str] | None:
    data = extract_json_object(content)
    if data is None:
        logger.warning("No JSON found in suggestions response")
        return None
    suggestions = data.get("suggestions")
    if not isinstance(suggestions, list):
        logger.warning("Invalid suggestions response format")
        return None
    return [s for s in suggestions if isinstance(s, str) and s.strip()]


def _post_lookup(batch: Mapping[str, CandidatePost]) -> dict[str, CandidatePost]:
    """Index posts by composite key, and by bare id where that is unambiguous."""
    lookup: dict[str, CandidatePost] = dict(batch)
    by_id: dict[str, list[CandidatePost]] = {}
    for post in batch.values():
        by_id.setdefault(post.id, []).append(post)
    for post_id, posts in by_id.items():
        if len(posts) == 1 and post_id not in lookup:
            lookup[post_id] = posts[0]
    return lookup


def _loads_object(snippet: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(snippet)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _balanced_end(content: str, start: int) -> int:
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(content)):
        char = content[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return idx
    return -1


def _extract_fenced_json(content: str) -> str | None:
    lines = content.splitlines()
    start_idx = None
    for idx, line in enumerate(lines):
        if line.strip().startswith("```") and "json" in line.lower():
            start_idx = idx + 1
            break
    if start_idx is None:
        return None
    for idx in range(start_idx, len(lines)):
        if lines[idx].strip().startswith("```"):
            snippet = "\n".join(lines[start_idx:idx]).strip()
            return snippet or None
    return None
