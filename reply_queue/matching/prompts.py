"""Prompt loading and rendering for matching, suggestions and heat checks."""

from __future__ import annotations

from functools import lru_cache
import json
from pathlib import Path
from typing import Iterable

from ..config import PromptConfig
from ..core.types import CandidatePost, FeedDocument


_PROMPT_DIR = Path(__file__).resolve().parent.parent / "prompts"


@lru_cache(maxsize=None)
def _load_template(name: str) -> str:
    path = _PROMPT_DIR / f"{name}.md"
    return path.read_text(encoding="utf-8").strip()


def _render_template(name: str, **values: object) -> str:
    template = _load_template(name)
    return template.format(**values)


def _truncate(text: str, limit: int, marker: str = "") -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + marker


def build_feed_summary(feed: FeedDocument, cfg: PromptConfig, max_items: int | None = None) -> str:
    """Numbered list of the newest feed items with URL and a short excerpt."""
    count = cfg.max_blog_items if max_items is None else max_items
    lines = []
    for index, item in enumerate(feed.items[:count], start=1):
        title = item.title or "Untitled"
        excerpt = _truncate(item.description or item.full_content or "", cfg.blog_content_char_limit, "...")
        url_line = f"\n   URL: {item.link}" if item.link else ""
        lines.append(f'{index}. "{title}"{url_line}\n   {excerpt}')
    return "\n\n".join(lines)


def build_style_section(examples: Iterable[str], cfg: PromptConfig, heading: str) -> str:
    selected = [ex for ex in examples if ex and ex.strip()][: cfg.max_style_examples]
    if not selected:
        return ""
    numbered = "\n".join(f'{idx}. "{ex}"' for idx, ex in enumerate(selected, start=1))
    return f"\n\n{heading}\n{numbered}"


def build_rules_section(rules: str | None) -> str:
    if not rules or not rules.strip():
        return ""
    return f"\n\nCommunication Rules (MUST follow):\n{rules.strip()}"


def posts_payload(posts: Iterable[CandidatePost], cfg: PromptConfig) -> str:
    """JSON block of posts, identified by their composite ``platform:id`` key."""
    payload = [
        {
            "id": post.key,
            "author": post.author,
            "content": _truncate(post.body_text or "", cfg.post_content_char_limit),
        }
        for post in posts
    ]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def build_matching_prompt(
    posts: list[CandidatePost],
    feed: FeedDocument,
    blog_url: str,
    cfg: PromptConfig,
    threshold: float,
    suggestions_count: int,
    style_examples: Iterable[str] = (),
    rules: str | None = None,
) -> str:
    return _render_template(
        "matching",
        feed_title=feed.title,
        blog_url=blog_url,
        blog_summary=build_feed_summary(feed, cfg),
        style_section=build_style_section(
            style_examples, cfg, "Writing Style Examples (match this tone and style):"
        ),
        rules_section=build_rules_section(rules),
        suggestions_count=suggestions_count,
        posts_json=posts_payload(posts, cfg),
        threshold=threshold,
    )


def build_suggestions_prompt(
    post: CandidatePost,
    feed: FeedDocument,
    blog_url: str,
    cfg: PromptConfig,
    suggestions_count: int,
    style_examples: Iterable[str] = (),
    rules: str | None = None,
) -> str:
    return _render_template(
        "suggestions",
        feed_title=feed.title,
        blog_url=blog_url,
        blog_summary=build_feed_summary(
            feed, cfg, max_items=min(cfg.suggestion_blog_items, cfg.max_blog_items)
        ),
        style_section=build_style_section(style_examples, cfg, "Write replies in this style:"),
        rules_section=build_rules_section(rules),
        suggestions_count=suggestions_count,
        author=post.author,
        content=post.body_text,
    )


def build_heat_check_prompt(posts: list[CandidatePost], cfg: PromptConfig) -> str:
    return _render_template("heat_check", posts_json=posts_payload(posts, cfg))
