"""
Per-process runtime state.

The rate limiter and the in-memory caches live on a ``RuntimeContext`` that is
built once and injected into the API client and the orchestrator. The clock is
injectable so tests can drive TTL expiry and backoff without sleeping.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time
from typing import Generic, Iterator, Protocol, TypeVar


T = TypeVar("T")


class Clock(Protocol):
    def now(self) -> float:
        """Current time in epoch seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


@dataclass
class RateLimiterState:
    """Shared throttling state for all completion API calls.

    Attributes:
        last_request_time: Time of the last successful request
        consecutive_errors: Retryable failures since the last success
        retry_after_until: Requests must not start before this time
    """

    last_request_time: float = 0.0
    consecutive_errors: int = 0
    retry_after_until: float | None = None


@dataclass
class CacheEntry(Generic[T]):
    value: T
    cached_at: float


class TTLCache(Generic[T]):
    """In-memory map whose entries expire ``ttl_seconds`` after insertion."""

    def __init__(self, ttl_seconds: float, clock: Clock):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock.now() - entry.cached_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, cached_at=self._clock.now())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def expires_in(self, key: str) -> float | None:
        """Seconds until ``key`` expires, or None if absent/expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry.cached_at + self.ttl_seconds - self._clock.now()
        return remaining if remaining >= 0 else None

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return sum(1 for _ in self._live_keys())

    def _live_keys(self) -> Iterator[str]:
        for key in list(self._entries):
            if self.get(key) is not None:
                yield key


MODEL_CACHE_KEY = "models"


@dataclass
class RuntimeContext:
    """Process-wide mutable state shared by the client and the orchestrator."""

    clock: Clock = field(default_factory=SystemClock)
    rate_limiter: RateLimiterState = field(default_factory=RateLimiterState)
    match_ttl_seconds: float = 30 * 60
    model_ttl_seconds: float = 60 * 60
    match_cache: TTLCache = field(init=False)
    tone_cache: TTLCache = field(init=False)
    model_cache: TTLCache = field(init=False)

    def __post_init__(self) -> None:
        self.match_cache = TTLCache(self.match_ttl_seconds, self.clock)
        self.tone_cache = TTLCache(self.match_ttl_seconds, self.clock)
        self.model_cache = TTLCache(self.model_ttl_seconds, self.clock)

    @classmethod
    def from_config(cls, cfg, clock: Clock | None = None) -> "RuntimeContext":
        """Build a context from an ``AppConfig``."""
        return cls(
            clock=clock or SystemClock(),
            match_ttl_seconds=cfg.matching.ai_cache_ttl_minutes * 60,
            model_ttl_seconds=cfg.catalog.cache_ttl_minutes * 60,
        )
