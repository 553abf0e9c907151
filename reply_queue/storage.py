"""
Durable storage collaborator.

The core only needs "get by key", "set by key" and "remove by key". Two
tiers exist: a small synced tier with a hard per-item byte ceiling, and a
larger local tier. ``MatchStore`` layers the typed entities on top of
whichever backends the caller provides.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
import tempfile
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from .config import StorageConfig
from .core.types import CandidatePost, FeedDocument, MatchResult
from .errors import StorageQuotaError

logger = logging.getLogger(__name__)


STORAGE_KEYS = {
    "matched_posts": "matched_posts",
    "extracted_posts": "extracted_posts",
    "evaluated_post_ids": "evaluated_post_ids",
    "cached_feed": "cached_feed",
    "example_comments": "example_comments",
}


class KeyValueStorage(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...


class MemoryStorage:
    """Process-local storage. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Local tier persisted as a single JSON document.

    Writes go to a temporary file in the same directory which then replaces
    the original, so a crash never leaves a truncated store.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Store %s is not valid JSON; starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def get(self, key: str) -> Any | None:
        return self._load().get(key)

    async def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    async def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)


def byte_size(key: str, value: Any) -> int:
    """Size a synced-tier item is charged: key plus its JSON encoding."""
    return len(key.encode("utf-8")) + len(json.dumps(value, ensure_ascii=False).encode("utf-8"))


class SyncedStorage:
    """Synced tier wrapper enforcing a per-item byte ceiling."""

    def __init__(self, inner: KeyValueStorage, item_limit_bytes: int = 8192):
        self.inner = inner
        self.item_limit_bytes = item_limit_bytes

    def fits(self, key: str, value: Any) -> bool:
        return byte_size(key, value) <= self.item_limit_bytes

    async def get(self, key: str) -> Any | None:
        return await self.inner.get(key)

    async def set(self, key: str, value: Any) -> None:
        size = byte_size(key, value)
        if size > self.item_limit_bytes:
            raise StorageQuotaError(key, size, self.item_limit_bytes)
        await self.inner.set(key, value)

    async def remove(self, key: str) -> None:
        await self.inner.remove(key)


@dataclass
class CachedFeed:
    feed: FeedDocument
    url: str
    fetched_at: float
    ttl_seconds: float

    def is_valid(self, now: float) -> bool:
        return now < self.fetched_at + self.ttl_seconds


@dataclass
class QueueStatus:
    current_size: int
    max_size: int

    @property
    def is_at_limit(self) -> bool:
        return self.current_size >= self.max_size


@dataclass
class AddPostsResult:
    added: int
    duplicates: int
    total: int
    limit_reached: bool


class MatchStore:
    """Typed access to the persisted entities of a reply queue."""

    def __init__(
        self,
        local: KeyValueStorage,
        synced: SyncedStorage | None = None,
        cfg: StorageConfig | None = None,
    ):
        self.local = local
        self.synced = synced
        self.cfg = cfg or StorageConfig()

    # Matches

    async def get_matches(self) -> list[MatchResult]:
        raw = await self.local.get(STORAGE_KEYS["matched_posts"]) or []
        return [MatchResult.from_dict(item) for item in raw]

    async def save_matches(self, matches: Iterable[MatchResult]) -> None:
        await self.local.set(STORAGE_KEYS["matched_posts"], [m.to_dict() for m in matches])

    async def clear_matches(self) -> None:
        await self.local.remove(STORAGE_KEYS["matched_posts"])

    # Evaluated post keys

    async def get_evaluated_keys(self) -> set[str]:
        return set(await self.local.get(STORAGE_KEYS["evaluated_post_ids"]) or [])

    async def add_evaluated_keys(self, keys: Iterable[str]) -> None:
        current = await self.get_evaluated_keys()
        current.update(keys)
        await self.local.set(STORAGE_KEYS["evaluated_post_ids"], sorted(current))

    async def clear_evaluated_keys(self) -> None:
        await self.local.remove(STORAGE_KEYS["evaluated_post_ids"])

    # Extracted post queue

    async def get_extracted_posts(self) -> list[CandidatePost]:
        raw = await self.local.get(STORAGE_KEYS["extracted_posts"]) or []
        return [CandidatePost.from_dict(item) for item in raw]

    async def save_extracted_posts(self, posts: Iterable[CandidatePost]) -> None:
        await self.local.set(STORAGE_KEYS["extracted_posts"], [p.to_dict() for p in posts])

    async def add_extracted_posts(self, new_posts: Iterable[CandidatePost]) -> AddPostsResult:
        """Queue posts, skipping known keys and respecting the queue size limit.

        Only posts not yet evaluated count against ``max_queue_size``. The
        stored list is trimmed to the most recently extracted
        ``max_extracted_posts`` entries.
        """
        existing = await self.get_extracted_posts()
        known = {p.key for p in existing}
        evaluated = await self.get_evaluated_keys()
        current_size = sum(1 for p in existing if p.key not in evaluated)
        capacity = max(0, self.cfg.max_queue_size - current_size)

        added = 0
        duplicates = 0
        limit_reached = capacity == 0
        for post in new_posts:
            if post.key in known:
                duplicates += 1
            elif added < capacity:
                existing.append(post)
                known.add(post.key)
                added += 1
            else:
                limit_reached = True

        if len(existing) > self.cfg.max_extracted_posts:
            existing.sort(key=lambda p: p.extracted_at, reverse=True)
            existing = existing[: self.cfg.max_extracted_posts]

        await self.save_extracted_posts(existing)
        return AddPostsResult(added=added, duplicates=duplicates, total=len(existing), limit_reached=limit_reached)

    async def queue_status(self) -> QueueStatus:
        existing = await self.get_extracted_posts()
        evaluated = await self.get_evaluated_keys()
        current = sum(1 for p in existing if p.key not in evaluated)
        return QueueStatus(current_size=current, max_size=self.cfg.max_queue_size)

    async def clear_extracted_posts(self) -> None:
        await self.local.set(STORAGE_KEYS["extracted_posts"], [])

    # Cached feed

    async def get_cached_feed(self) -> CachedFeed | None:
        raw = await self.local.get(STORAGE_KEYS["cached_feed"])
        if not raw:
            return None
        try:
            return CachedFeed(
                feed=FeedDocument.from_dict(raw["feed"]),
                url=raw["url"],
                fetched_at=float(raw["fetched_at"]),
                ttl_seconds=float(raw["ttl_seconds"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding malformed cached feed")
            return None

    async def save_cached_feed(self, cached: CachedFeed) -> None:
        await self.local.set(
            STORAGE_KEYS["cached_feed"],
            {
                "feed": cached.feed.to_dict(),
                "url": cached.url,
                "fetched_at": cached.fetched_at,
                "ttl_seconds": cached.ttl_seconds,
            },
        )

    async def clear_cached_feed(self) -> None:
        await self.local.remove(STORAGE_KEYS["cached_feed"])

    # Example comments (writing style)

    async def get_example_comments(self) -> list[str]:
        key = STORAGE_KEYS["example_comments"]
        if self.synced is not None:
            synced = await self.synced.get(key)
            if synced is not None:
                return list(synced)
        return list(await self.local.get(key) or [])

    async def save_example_comments(self, comments: list[str]) -> list[str]:
        """Store comments in the synced tier when they fit, else locally."""
        key = STORAGE_KEYS["example_comments"]
        limited = comments[: self.cfg.max_example_comments]
        if self.synced is not None and self.synced.fits(key, limited):
            await self.synced.set(key, limited)
            await self.local.remove(key)
        else:
            await self.local.set(key, limited)
            if self.synced is not None:
                await self.synced.remove(key)
        return limited

    async def add_example_comment(self, comment: str) -> list[str]:
        existing = await self.get_example_comments()
        if comment in existing:
            return existing
        return await self.save_example_comments([comment] + existing)

    async def remove_example_comment(self, comment: str) -> list[str]:
        existing = await self.get_example_comments()
        return await self.save_example_comments([c for c in existing if c != comment])

    async def clear_all_caches(self) -> None:
        """Drop queued posts, matches, the cached feed and evaluated keys.

        Settings and example comments are kept.
        """
        await self.clear_extracted_posts()
        await self.clear_matches()
        await self.clear_cached_feed()
        await self.clear_evaluated_keys()
