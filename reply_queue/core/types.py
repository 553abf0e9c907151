"""
Core data types for ReplyQueue.

This module defines the fundamental data structures used throughout the pipeline:
- FeedDocument / FeedItem: Parsed representation of the user's RSS/Atom feed
- CandidatePost: An externally extracted social post awaiting evaluation
- MatchResult: A post judged relevant, with score, reason and reply state
- ToneClassification: Heat check output for an already-matched post
- ModelDescriptor: One entry of the completion API's model catalog

Timestamps are epoch seconds as produced by the runtime ``Clock``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


MATCH_STATUSES = ("pending", "replied", "skipped")
TONES = ("positive", "educational", "question", "negative", "promotional", "neutral")


def post_key(platform: str, post_id: str) -> str:
    """Composite identity of a post; ids are only unique within a platform."""
    return f"{platform}:{post_id}"


@dataclass(frozen=True)
class Enclosure:
    url: str
    type: str | None = None
    length: int | None = None


@dataclass(frozen=True)
class FeedItem:
    """A single item or entry of a parsed feed.

    Attributes:
        id: guid/id, else link, else a positional synthetic id; never empty
        title: Item headline
        link: URL of the item
        description: Plain-text summary, if present
        full_content: Plain-text full body (content:encoded / atom content)
        published_at: Publication date as found in the feed
        author: Author name
        categories: Category labels in document order
        enclosure: Attached media, if any
    """

    id: str
    title: str
    link: str = ""
    description: str | None = None
    full_content: str | None = None
    published_at: str | None = None
    author: str | None = None
    categories: tuple[str, ...] = ()
    enclosure: Enclosure | None = None

    @property
    def body(self) -> str:
        return self.full_content or self.description or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "link": self.link,
            "description": self.description,
            "full_content": self.full_content,
            "published_at": self.published_at,
            "author": self.author,
            "categories": list(self.categories),
            "enclosure": (
                {
                    "url": self.enclosure.url,
                    "type": self.enclosure.type,
                    "length": self.enclosure.length,
                }
                if self.enclosure
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedItem":
        enclosure = data.get("enclosure")
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            link=data.get("link", ""),
            description=data.get("description"),
            full_content=data.get("full_content"),
            published_at=data.get("published_at"),
            author=data.get("author"),
            categories=tuple(data.get("categories") or ()),
            enclosure=Enclosure(**enclosure) if enclosure else None,
        )


@dataclass(frozen=True)
class FeedDocument:
    """Parsed feed. Recreated on every fetch, never mutated."""

    title: str
    format: str
    items: tuple[FeedItem, ...] = ()
    description: str | None = None
    link: str | None = None
    last_updated: str | None = None

    def limit(self, max_items: int) -> "FeedDocument":
        """Return a copy keeping only the first ``max_items`` items."""
        if len(self.items) <= max_items:
            return self
        return FeedDocument(
            title=self.title,
            format=self.format,
            items=self.items[:max_items],
            description=self.description,
            link=self.link,
            last_updated=self.last_updated,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "format": self.format,
            "description": self.description,
            "link": self.link,
            "last_updated": self.last_updated,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedDocument":
        return cls(
            title=data["title"],
            format=data["format"],
            description=data.get("description"),
            link=data.get("link"),
            last_updated=data.get("last_updated"),
            items=tuple(FeedItem.from_dict(item) for item in data.get("items", [])),
        )


@dataclass(frozen=True)
class CandidatePost:
    """A social post supplied by the extraction layer. Read-only here.

    Attributes:
        id: Platform-scoped identifier
        platform: Source platform (e.g. "linkedin")
        author: Display name of the author
        body_text: Post text
        headline: Author headline/tagline, if the platform exposes one
        url: Permalink to the post
        reaction_count: Engagement counter, if known
        comment_count: Engagement counter, if known
        repost_count: Engagement counter, if known
        extracted_at: When the post was captured
    """

    id: str
    platform: str
    author: str
    body_text: str
    headline: str | None = None
    url: str | None = None
    reaction_count: int | None = None
    comment_count: int | None = None
    repost_count: int | None = None
    extracted_at: float = 0.0

    @property
    def key(self) -> str:
        return post_key(self.platform, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform,
            "author": self.author,
            "body_text": self.body_text,
            "headline": self.headline,
            "url": self.url,
            "reaction_count": self.reaction_count,
            "comment_count": self.comment_count,
            "repost_count": self.repost_count,
            "extracted_at": self.extracted_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CandidatePost":
        return cls(
            id=str(data["id"]),
            platform=data["platform"],
            author=data.get("author", ""),
            body_text=data.get("body_text", ""),
            headline=data.get("headline"),
            url=data.get("url"),
            reaction_count=data.get("reaction_count"),
            comment_count=data.get("comment_count"),
            repost_count=data.get("repost_count"),
            extracted_at=float(data.get("extracted_at") or 0.0),
        )


@dataclass(frozen=True)
class ReplySuggestion:
    id: str
    text: str
    generated_at: float


@dataclass(frozen=True)
class ToneClassification:
    tone: str
    reason: str
    recommended: bool


@dataclass
class MatchResult:
    """A candidate post judged relevant to the feed.

    Status transitions and draft edits mutate the instance in place; a later
    reconciliation may refresh score, reason and keywords.

    Attributes:
        post: The matched post
        score: Relevance in [0, 1]; clamped on construction
        matched_keywords: Keywords in discovery order (empty for AI matches)
        reason: Human-readable match explanation
        matched_at: When the score was computed
        status: "pending", "replied" or "skipped"
        draft_reply: User's draft text
        reply_suggestions: Generated replies, in model order
        tone: Heat check result, if one was run
    """

    post: CandidatePost
    score: float
    matched_keywords: list[str] = field(default_factory=list)
    reason: str = ""
    matched_at: float = 0.0
    status: str = "pending"
    draft_reply: str | None = None
    reply_suggestions: list[ReplySuggestion] | None = None
    tone: ToneClassification | None = None

    def __post_init__(self) -> None:
        self.score = min(1.0, max(0.0, float(self.score)))
        if self.status not in MATCH_STATUSES:
            raise ValueError(f"Invalid match status: {self.status}")

    @property
    def key(self) -> str:
        return self.post.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "post": self.post.to_dict(),
            "score": self.score,
            "matched_keywords": list(self.matched_keywords),
            "reason": self.reason,
            "matched_at": self.matched_at,
            "status": self.status,
            "draft_reply": self.draft_reply,
            "reply_suggestions": (
                [
                    {"id": s.id, "text": s.text, "generated_at": s.generated_at}
                    for s in self.reply_suggestions
                ]
                if self.reply_suggestions is not None
                else None
            ),
            "tone": (
                {
                    "tone": self.tone.tone,
                    "reason": self.tone.reason,
                    "recommended": self.tone.recommended,
                }
                if self.tone
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MatchResult":
        suggestions = data.get("reply_suggestions")
        tone = data.get("tone")
        return cls(
            post=CandidatePost.from_dict(data["post"]),
            score=data.get("score", 0.0),
            matched_keywords=list(data.get("matched_keywords") or []),
            reason=data.get("reason", ""),
            matched_at=float(data.get("matched_at") or 0.0),
            status=data.get("status", "pending"),
            draft_reply=data.get("draft_reply"),
            reply_suggestions=(
                [ReplySuggestion(**s) for s in suggestions] if suggestions is not None else None
            ),
            tone=ToneClassification(**tone) if tone else None,
        )


@dataclass(frozen=True)
class ModelPricing:
    """Per-token USD prices as published by the catalog."""

    prompt: float = 0.0
    completion: float = 0.0


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    display_name: str
    context_length: int = 0
    pricing: ModelPricing = field(default_factory=ModelPricing)
    released_at: float | None = None
    is_recommended: bool = False
    description: str | None = None


@dataclass
class MatchPass:
    """Output of one keyword or AI match pass.

    Attributes:
        matches: Results above threshold, sorted by score and capped
        total_evaluated: Number of posts considered
        keywords: Keyword set used (empty for AI passes)
        processing_seconds: Wall time of the pass
        used_fallback: True when an AI pass degraded to keyword scoring
    """

    matches: list[MatchResult]
    total_evaluated: int
    keywords: list[str] = field(default_factory=list)
    processing_seconds: float = 0.0
    used_fallback: bool = False
