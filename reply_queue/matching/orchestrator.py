"""
AI match passes over candidate posts.

A pass partitions posts into those with a fresh cached AI verdict and those
without, sends all uncached posts in one completion call, and turns the
validated reply into ``MatchResult`` objects. Recoverable API failures and
unparseable replies degrade to keyword scoring for the uncached posts. Auth
and balance failures need user action and always propagate.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import time
from typing import Iterable
import uuid

from ..config import MatchingConfig, PromptConfig
from ..core.context import RuntimeContext
from ..core.types import (
    CandidatePost,
    FeedDocument,
    MatchPass,
    MatchResult,
    ReplySuggestion,
    ToneClassification,
)
from ..errors import USER_ACTION_KINDS, ApiError
from ..feed.keywords import extract_keywords
from ..llm.client import OpenRouterClient
from ..llm.parsing import ParsedMatch, parse_match_response, parse_suggestions, parse_tone_response
from .prompts import build_heat_check_prompt, build_matching_prompt, build_suggestions_prompt
from .scorer import keyword_match_posts

logger = logging.getLogger(__name__)


@dataclass
class MatchPreferences:
    threshold: float
    max_posts: int

    @classmethod
    def from_config(cls, cfg: MatchingConfig) -> "MatchPreferences":
        return cls(threshold=cfg.threshold, max_posts=cfg.max_posts)


def new_suggestion_id(now: float) -> str:
    return f"suggestion-{int(now * 1000)}-{uuid.uuid4().hex[:9]}"


class AIMatchOrchestrator:
    """Runs AI match passes, heat checks and suggestion generation."""

    def __init__(
        self,
        client: OpenRouterClient,
        context: RuntimeContext,
        matching: MatchingConfig | None = None,
        prompt: PromptConfig | None = None,
    ):
        self.client = client
        self.context = context
        self.matching = matching or MatchingConfig()
        self.prompt = prompt or PromptConfig()

    async def match_posts(
        self,
        posts: Iterable[CandidatePost],
        feed: FeedDocument,
        blog_url: str,
        style_examples: Iterable[str] = (),
        rules: str | None = None,
        preferences: MatchPreferences | None = None,
    ) -> MatchPass:
        """Match ``posts`` against ``feed`` with one completion call for the uncached ones.

        Raises:
            AuthError: The API key was rejected
            InsufficientBalanceError: The account cannot pay for the call
        """
        started = time.monotonic()
        prefs = preferences or MatchPreferences.from_config(self.matching)
        post_list = _unique(posts)
        cache = self.context.match_cache

        cached: list[ParsedMatch] = []
        uncached: list[CandidatePost] = []
        for post in post_list:
            hit = cache.get(post.key)
            if hit is not None:
                cached.append(replace(hit, post=post))
            else:
                uncached.append(post)
        logger.info("Found %d cached, %d need AI matching", len(cached), len(uncached))

        fresh: list[ParsedMatch] = []
        if uncached:
            prompt = build_matching_prompt(
                uncached,
                feed,
                blog_url,
                self.prompt,
                threshold=prefs.threshold,
                suggestions_count=self.matching.suggestions_count,
                style_examples=style_examples,
                rules=rules,
            )
            try:
                content = await self.client.chat_completion(
                    prompt,
                    temperature=self.matching.match_temperature,
                    max_tokens=self.matching.max_tokens,
                    event="ai_match",
                )
            except ApiError as exc:
                if exc.kind in USER_ACTION_KINDS:
                    raise
                logger.warning("AI matching failed (%s), falling back to keyword matching: %s", exc.kind.value, exc)
                return self._keyword_fallback(post_list, uncached, cached, feed, prefs, started)

            parsed = parse_match_response(content, {post.key: post for post in uncached})
            if parsed is None:
                logger.warning("Unparseable AI reply, falling back to keyword matching")
                return self._keyword_fallback(post_list, uncached, cached, feed, prefs, started)

            for result in parsed:
                if result.score >= prefs.threshold:
                    cache.set(result.post.key, result)
                    fresh.append(result)
            logger.info("AI returned %d results, %d above threshold", len(parsed), len(fresh))

        now = self.context.clock.now()
        matches = [
            self._to_match_result(result, now)
            for result in cached + fresh
            if result.score >= prefs.threshold
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        limited = matches[: prefs.max_posts]
        elapsed = time.monotonic() - started
        logger.info(
            "AI matched %d posts (showing top %d) in %.0fms", len(matches), len(limited), elapsed * 1000
        )
        return MatchPass(matches=limited, total_evaluated=len(post_list), processing_seconds=elapsed)

    async def heat_check_posts(self, matches: Iterable[MatchResult]) -> list[MatchResult]:
        """Attach a tone classification to each match where one is available.

        Posts whose classification could not be obtained are returned
        without a tone; there is no keyword equivalent to fall back to.

        Raises:
            AuthError: The API key was rejected
            InsufficientBalanceError: The account cannot pay for the call
        """
        match_list = list(matches)
        cache = self.context.tone_cache
        tones: dict[str, ToneClassification] = {}
        pending: dict[str, CandidatePost] = {}
        for match in match_list:
            hit = cache.get(match.key)
            if hit is not None:
                tones[match.key] = hit
            else:
                pending.setdefault(match.key, match.post)
        uncached = list(pending.values())
        logger.info("Found %d cached heat checks, %d need analysis", len(tones), len(uncached))

        if uncached:
            prompt = build_heat_check_prompt(uncached, self.prompt)
            try:
                content = await self.client.chat_completion(
                    prompt,
                    temperature=self.matching.heat_check_temperature,
                    max_tokens=self.matching.max_tokens,
                    event="heat_check",
                )
            except ApiError as exc:
                if exc.kind in USER_ACTION_KINDS:
                    raise
                logger.warning("Heat check failed (%s): %s", exc.kind.value, exc)
            else:
                parsed = parse_tone_response(content, {post.key: post for post in uncached}) or {}
                for key, tone in parsed.items():
                    cache.set(key, tone)
                    tones[key] = tone
                logger.info("AI heat check returned %d results", len(parsed))

        return [
            replace(match, tone=tones[match.key]) if match.key in tones else match
            for match in match_list
        ]

    async def generate_reply_suggestions(
        self,
        post: CandidatePost,
        feed: FeedDocument,
        blog_url: str,
        style_examples: Iterable[str] = (),
        rules: str | None = None,
    ) -> list[ReplySuggestion]:
        """Generate fresh reply suggestions for one post; [] if the call fails."""
        logger.info("Generating suggestions for post %s", post.key)
        prompt = build_suggestions_prompt(
            post,
            feed,
            blog_url,
            self.prompt,
            suggestions_count=self.matching.suggestions_count,
            style_examples=style_examples,
            rules=rules,
        )
        try:
            content = await self.client.chat_completion(
                prompt,
                temperature=self.matching.suggestion_temperature,
                max_tokens=self.matching.max_tokens,
                event="reply_suggestions",
            )
        except ApiError as exc:
            if exc.kind in USER_ACTION_KINDS:
                raise
            logger.warning("Failed to generate suggestions (%s): %s", exc.kind.value, exc)
            return []

        texts = parse_suggestions(content) or []
        now = self.context.clock.now()
        return [ReplySuggestion(id=new_suggestion_id(now), text=text, generated_at=now) for text in texts]

    def clear_match_cache(self) -> None:
        self.context.match_cache.clear()
        logger.info("AI match cache cleared")

    def clear_tone_cache(self) -> None:
        self.context.tone_cache.clear()
        logger.info("Heat check cache cleared")

    def _to_match_result(self, result: ParsedMatch, now: float) -> MatchResult:
        return MatchResult(
            post=result.post,
            score=result.score,
            matched_keywords=[],
            reason=result.reason,
            matched_at=now,
            reply_suggestions=[
                ReplySuggestion(id=new_suggestion_id(now), text=text, generated_at=now)
                for text in result.suggestions
            ],
        )

    def _keyword_fallback(
        self,
        all_posts: list[CandidatePost],
        uncached: list[CandidatePost],
        cached: list[ParsedMatch],
        feed: FeedDocument,
        prefs: MatchPreferences,
        started: float,
    ) -> MatchPass:
        now = self.context.clock.now()
        keyword_pass = keyword_match_posts(
            uncached,
            extract_keywords(feed),
            threshold=prefs.threshold,
            max_posts=prefs.max_posts,
            now=now,
        )
        matches = keyword_pass.matches + [
            self._to_match_result(result, now) for result in cached if result.score >= prefs.threshold
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return MatchPass(
            matches=matches[: prefs.max_posts],
            total_evaluated=len(all_posts),
            keywords=keyword_pass.keywords,
            processing_seconds=time.monotonic() - started,
            used_fallback=True,
        )


def _unique(posts: Iterable[CandidatePost]) -> list[CandidatePost]:
    seen: set[str] = set()
    unique: list[CandidatePost] = []
    for post in posts:
        if post.key not in seen:
            seen.add(post.key)
            unique.append(post)
    return unique
