"""Test doubles and builders shared by the test modules."""

from __future__ import annotations

from reply_queue.core.types import CandidatePost, FeedDocument, FeedItem


class FakeClock:
    """Clock whose sleep advances time instantly and records each wait."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds

    def advance(self, seconds: float) -> None:
        self.current += seconds


class ScriptedClient:
    """Completion client stub returning canned replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[dict] = []
        self.model_cache_cleared = False

    async def chat_completion(self, prompt, temperature, max_tokens, event="chat_completion", model=None):
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens, "event": event})
        if not self.replies:
            raise AssertionError("unexpected completion call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def clear_model_cache(self) -> None:
        self.model_cache_cleared = True


def make_post(post_id: str, body: str, platform: str = "linkedin", author: str = "Ann Author", **kwargs) -> CandidatePost:
    return CandidatePost(id=post_id, platform=platform, author=author, body_text=body, **kwargs)


def make_feed(*items: FeedItem, title: str = "Blog", link: str | None = "https://blog.example.com") -> FeedDocument:
    if not items:
        items = (
            FeedItem(
                id="a1",
                title="Async Python tooling",
                link="https://blog.example.com/async-tooling",
                description="Profiling asyncio services with structured tracing",
                categories=("Python",),
            ),
        )
    return FeedDocument(title=title, format="rss", items=tuple(items), link=link)
