"""
Feed fetching with retry and a TTL-bounded stored copy.

The parsed feed is kept in the durable store together with its source URL
so a later pass can reuse it until the TTL expires or the URL changes.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
from urllib.parse import urlparse

import httpx

from ..config import FeedConfig
from ..core.context import Clock, SystemClock
from ..core.types import FeedDocument
from ..errors import FeedFetchError
from ..storage import CachedFeed, MatchStore
from .parser import parse_feed

logger = logging.getLogger(__name__)


FEED_ACCEPT = "application/rss+xml, application/xml, text/xml, application/atom+xml, */*"
_FEED_SUFFIX_RE = re.compile(r"/feed\.xml$|/rss\.xml$|/feed/?$|/rss/?$", re.IGNORECASE)


def validate_feed_url(url: str) -> str | None:
    """Return an error message if ``url`` must not be fetched, else None.

    Only http(s) URLs are accepted. Loopback, private, link-local and
    unspecified hosts are rejected.
    """
    if not url or not url.strip():
        return "RSS feed URL is required"
    candidate = url.strip()
    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        return "Invalid URL format. URL must start with http:// or https://"

    hostname = (parsed.hostname or "").lower()
    if not hostname:
        return "Invalid URL format"
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return "Private or internal network URLs are not allowed"
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return None
    if address.is_loopback or address.is_private or address.is_link_local or address.is_unspecified:
        return "Private or internal network URLs are not allowed"
    return None


def derive_blog_url(feed: FeedDocument, feed_url: str) -> str:
    """The blog's public URL: the feed link, else the feed URL minus its feed path."""
    if feed.link:
        return feed.link
    return _FEED_SUFFIX_RE.sub("", feed_url.strip())


async def fetch_feed(
    url: str,
    cfg: FeedConfig,
    client: httpx.AsyncClient | None = None,
) -> FeedDocument:
    """Download and parse a feed.

    Transport failures are retried ``cfg.retries`` times with a linear
    backoff. HTTP error statuses are not retried.

    Raises:
        FeedFetchError: On transport failure or a non-2xx response
        ParseError: If the body is not a supported feed
    """
    logger.info("Fetching feed: %s", url)
    headers = {"Accept": FEED_ACCEPT, "User-Agent": cfg.user_agent}
    last_error: str | None = None

    for attempt in range(cfg.retries + 1):
        try:
            if client is not None:
                resp = await client.get(url, headers=headers, follow_redirects=True)
            else:
                async with httpx.AsyncClient(
                    timeout=cfg.timeout_seconds,
                    follow_redirects=True,
                    trust_env=cfg.trust_env,
                ) as owned:
                    resp = await owned.get(url, headers=headers)
        except httpx.TransportError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Feed fetch attempt %d failed: %s", attempt + 1, last_error)
            if attempt < cfg.retries:
                await asyncio.sleep(0.5 * (attempt + 1))
            continue

        if resp.status_code >= 400:
            raise FeedFetchError(
                f"HTTP {resp.status_code}: {resp.reason_phrase}",
                url=url,
                status_code=resp.status_code,
            )
        feed = parse_feed(resp.text)
        logger.info("Parsed feed %r with %d items", feed.title, len(feed.items))
        return feed

    raise FeedFetchError(f"Failed to fetch RSS feed: {last_error}", url=url)


async def fetch_feed_with_cache(
    url: str,
    store: MatchStore,
    cfg: FeedConfig,
    clock: Clock | None = None,
    client: httpx.AsyncClient | None = None,
) -> tuple[FeedDocument, bool]:
    """Return ``(feed, from_cache)``, refetching when stale or for a new URL.

    ``cfg.max_items`` is applied to both fresh and cached documents so a
    lowered limit takes effect without a refetch.
    """
    clock = clock or SystemClock()
    cached = await store.get_cached_feed()
    now = clock.now()
    if cached is not None and cached.url == url and cached.is_valid(now):
        remaining = cached.fetched_at + cached.ttl_seconds - now
        logger.info("Using cached feed (expires in %d minutes)", round(remaining / 60))
        return cached.feed.limit(cfg.max_items), True

    feed = (await fetch_feed(url, cfg, client=client)).limit(cfg.max_items)
    await store.save_cached_feed(
        CachedFeed(
            feed=feed,
            url=url,
            fetched_at=clock.now(),
            ttl_seconds=cfg.cache_ttl_minutes * 60,
        )
    )
    logger.info("Feed cached (TTL: %d minutes)", cfg.cache_ttl_minutes)
    return feed, False
