"""
Match pass workflow over the durable store.

This module coordinates one analysis pass:
1. Load the feed (cached copy when fresh)
2. Select queued posts that were not evaluated yet
3. Score them by keywords or by AI
4. Mark every selected post as evaluated, whatever the outcome
5. Merge the new results into the stored match set and save it

Heat checks, suggestion generation and status updates work on the stored
match set directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Iterable

import httpx

from .config import AppConfig, get_api_key
from .core.context import Clock, RuntimeContext
from .core.types import CandidatePost, FeedDocument, MatchPass, MatchResult, ReplySuggestion, post_key
from .errors import FeedFetchError
from .feed.fetcher import derive_blog_url, fetch_feed_with_cache, validate_feed_url
from .feed.keywords import extract_keywords
from .llm.client import OpenRouterClient
from .matching.orchestrator import AIMatchOrchestrator, MatchPreferences
from .matching.reconciler import update_match_status, merge_matches
from .matching.scorer import keyword_match_posts
from .storage import JsonFileStorage, MatchStore, QueueStatus, SyncedStorage

logger = logging.getLogger(__name__)


@dataclass
class PassReport:
    """Outcome of a match pass.

    Attributes:
        match_pass: Raw output of the keyword or AI pass
        matches: Stored match set after the merge
        selected: Number of queued posts sent through the pass
        skipped: Number of queued posts skipped as already evaluated
    """

    match_pass: MatchPass
    matches: list[MatchResult] = field(default_factory=list)
    selected: int = 0
    skipped: int = 0


class ReplyQueueService:
    """Runs match passes against the configured store, feed and API client."""

    def __init__(
        self,
        cfg: AppConfig,
        store: MatchStore,
        context: RuntimeContext | None = None,
        client: OpenRouterClient | None = None,
        llm_logger: logging.Logger | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.store = store
        self.context = context or RuntimeContext.from_config(cfg)
        self.client = client or OpenRouterClient(
            cfg.provider,
            cfg.rate_limit,
            self.context,
            api_key=get_api_key(cfg.provider),
            catalog_cfg=cfg.catalog,
            log_cfg=cfg.logging,
            llm_logger=llm_logger,
        )
        self.orchestrator = AIMatchOrchestrator(self.client, self.context, cfg.matching, cfg.prompt)
        self._http_client = http_client

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        clock: Clock | None = None,
        llm_logger: logging.Logger | None = None,
    ) -> "ReplyQueueService":
        """Build a service backed by JSON files under ``cfg.storage.path``."""
        path = Path(cfg.storage.path)
        local = JsonFileStorage(path)
        synced = SyncedStorage(
            JsonFileStorage(path.with_name(f"{path.stem}.synced{path.suffix or '.json'}")),
            item_limit_bytes=cfg.storage.sync_item_limit_bytes,
        )
        store = MatchStore(local, synced, cfg.storage)
        return cls(cfg, store, context=RuntimeContext.from_config(cfg, clock), llm_logger=llm_logger)

    async def load_feed(self, feed_url: str) -> tuple[FeedDocument, bool]:
        """Return ``(feed, from_cache)`` for ``feed_url``.

        Raises:
            FeedFetchError: If the URL is rejected or cannot be fetched
            ParseError: If the body is not a supported feed
        """
        problem = validate_feed_url(feed_url)
        if problem:
            raise FeedFetchError(problem, url=feed_url)
        return await fetch_feed_with_cache(
            feed_url,
            self.store,
            self.cfg.feed,
            clock=self.context.clock,
            client=self._http_client,
        )

    async def queue_posts(self, posts: Iterable[CandidatePost]):
        return await self.store.add_extracted_posts(posts)

    async def queue_status(self) -> QueueStatus:
        return await self.store.queue_status()

    async def keyword_pass(
        self,
        feed: FeedDocument,
        post_keys: Iterable[str] | None = None,
        preferences: MatchPreferences | None = None,
    ) -> PassReport:
        """Score queued, unevaluated posts against the feed's keywords."""
        prefs = preferences or MatchPreferences.from_config(self.cfg.matching)
        selected, skipped = await self._select_posts(post_keys)
        if not selected:
            return await self._empty_report(skipped)

        match_pass = keyword_match_posts(
            selected,
            extract_keywords(feed),
            threshold=prefs.threshold,
            max_posts=prefs.max_posts,
            now=self.context.clock.now(),
        )
        return await self._commit(match_pass, selected, skipped)

    async def ai_pass(
        self,
        feed: FeedDocument,
        blog_url: str,
        post_keys: Iterable[str] | None = None,
        rules: str | None = None,
        preferences: MatchPreferences | None = None,
    ) -> PassReport:
        """Match queued, unevaluated posts with the completion API.

        Posts are marked evaluated even when the pass degraded to keyword
        scoring. Nothing is marked when an auth or balance error propagates.
        """
        selected, skipped = await self._select_posts(post_keys)
        if not selected:
            return await self._empty_report(skipped)

        examples = await self.store.get_example_comments()
        match_pass = await self.orchestrator.match_posts(
            selected,
            feed,
            blog_url,
            style_examples=examples,
            rules=rules,
            preferences=preferences,
        )
        if match_pass.used_fallback:
            logger.warning("AI pass fell back to keyword scoring")
        return await self._commit(match_pass, selected, skipped)

    async def heat_check(self) -> list[MatchResult]:
        """Classify the tone of every stored match and save the result."""
        matches = await self.store.get_matches()
        if not matches:
            logger.info("Heat check: no matched posts to analyze")
            return []
        updated = await self.orchestrator.heat_check_posts(matches)
        analyzed = sum(1 for m in updated if m.tone is not None)
        logger.info("Heat check: %d/%d posts analyzed", analyzed, len(updated))
        await self.store.save_matches(updated)
        return updated

    async def generate_suggestions(
        self,
        platform: str,
        post_id: str,
        feed: FeedDocument,
        blog_url: str,
        rules: str | None = None,
    ) -> list[ReplySuggestion]:
        """Regenerate suggestions for a stored match and persist them.

        Raises:
            KeyError: If no stored match has this post
        """
        key = post_key(platform, post_id)
        matches = await self.store.get_matches()
        target = next((m for m in matches if m.key == key), None)
        if target is None:
            raise KeyError(f"No matched post {key}")

        examples = await self.store.get_example_comments()
        suggestions = await self.orchestrator.generate_reply_suggestions(
            target.post, feed, blog_url, style_examples=examples, rules=rules
        )
        if suggestions:
            target.reply_suggestions = suggestions
            await self.store.save_matches(matches)
        return suggestions

    async def set_status(
        self,
        platform: str,
        post_id: str,
        status: str,
        draft_reply: str | None = None,
    ) -> list[MatchResult]:
        matches = await self.store.get_matches()
        updated = update_match_status(matches, post_id, platform, status, draft_reply)
        await self.store.save_matches(updated)
        return updated

    async def clear_caches(self) -> None:
        """Drop stored passes and every in-memory cache."""
        await self.store.clear_all_caches()
        self.orchestrator.clear_match_cache()
        self.orchestrator.clear_tone_cache()
        self.client.clear_model_cache()

    def blog_url_for(self, feed: FeedDocument, feed_url: str) -> str:
        return derive_blog_url(feed, feed_url)

    async def _select_posts(self, post_keys: Iterable[str] | None) -> tuple[list[CandidatePost], int]:
        queued = await self.store.get_extracted_posts()
        evaluated = await self.store.get_evaluated_keys()
        wanted = set(post_keys) if post_keys is not None else None

        selected: list[CandidatePost] = []
        skipped = 0
        for post in queued:
            if wanted is not None and post.key not in wanted:
                continue
            if post.key in evaluated:
                skipped += 1
                continue
            selected.append(post)
        logger.info(
            "Selected %d queued posts (%d total, %d already evaluated)", len(selected), len(queued), skipped
        )
        return selected, skipped

    async def _commit(self, match_pass: MatchPass, selected: list[CandidatePost], skipped: int) -> PassReport:
        await self.store.add_evaluated_keys(post.key for post in selected)
        existing = await self.store.get_matches()
        merged = merge_matches(existing, match_pass.matches, self.cfg.matching.max_matched_posts)
        await self.store.save_matches(merged)
        logger.info("Pass matched %d posts, merged to %d", len(match_pass.matches), len(merged))
        return PassReport(match_pass=match_pass, matches=merged, selected=len(selected), skipped=skipped)

    async def _empty_report(self, skipped: int) -> PassReport:
        return PassReport(
            match_pass=MatchPass(matches=[], total_evaluated=0),
            matches=await self.store.get_matches(),
            skipped=skipped,
        )
