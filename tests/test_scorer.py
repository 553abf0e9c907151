"""Tests for deterministic keyword scoring."""

from __future__ import annotations

import pytest

from helpers import make_post
from reply_queue.core.types import MatchResult
from reply_queue.feed.keywords import extract_keywords
from reply_queue.feed.parser import parse_feed
from reply_queue.matching.scorer import keyword_match_posts, match_reason, rescore_matches, score_post


def test_feed_to_score_scenario():
    feed = parse_feed(
        "<rss><channel><title>Blog</title><item><title>A</title><link>https://x/a</link>"
        "<guid>a1</guid><description>ai tooling</description></item></channel></rss>"
    )
    post = make_post("1", "new ai tooling launched today")

    score, matched = score_post(post, ["ai", "tooling"])

    assert feed.items[0].id == "a1"
    assert matched == ["ai", "tooling"]
    assert score > 0.3
    assert score == pytest.approx(2 / 5 * 0.6 + 1.0 * 0.4)


def test_empty_keyword_set_scores_zero():
    assert score_post(make_post("1", "anything at all"), []) == (0.0, [])


def test_phrase_match_outweighs_partial_overlap():
    post = make_post("1", "We moved our event sourcing system to Postgres")

    phrase_score, _ = score_post(post, ["event sourcing"])
    partial_score, partial = score_post(post, ["event streaming"])

    assert partial == ["event streaming"]
    assert phrase_score == pytest.approx(0.2 * 0.6 + 1.0 * 0.4)
    assert partial_score == pytest.approx(0.2 * 0.6 + 0.5 * 0.4)


def test_score_saturates_and_stays_in_unit_interval():
    keywords = [f"topic{i}" for i in range(12)]
    post = make_post("1", " ".join(keywords) + " and some long phrase here", author="Topic0 fan")

    score, matched = score_post(post, keywords + ["some long phrase here"])

    assert len(matched) == 13
    assert 0.0 <= score <= 1.0
    assert score == pytest.approx(1.0)


def test_author_and_headline_count_as_post_text():
    post = make_post("1", "unrelated body", author="Grace Hopper", headline="Compiler engineer")

    _, matched = score_post(post, ["hopper", "compiler"])

    assert matched == ["hopper", "compiler"]


def test_match_reason_wording():
    assert match_reason([]) == "No specific keywords matched"
    assert match_reason(["ai"]) == 'Matched keyword: "ai"'
    assert match_reason(["a", "b", "c"]) == 'Matched keywords: "a", "b", "c"'
    assert match_reason(["a", "b", "c", "d"]) == 'Matched 4 keywords including: "a", "b", "c"'


def test_keyword_match_posts_filters_sorts_and_caps():
    posts = [
        make_post("1", "python asyncio tracing tips"),
        make_post("2", "nothing relevant here"),
        make_post("3", "python"),
        make_post("4", "python asyncio tracing profiling benchmarks"),
    ]
    keywords = {"python", "asyncio", "tracing", "profiling", "benchmarks"}

    result = keyword_match_posts(posts, keywords, threshold=0.3, max_posts=2, now=100.0)

    assert result.total_evaluated == 4
    assert result.keywords == sorted(keywords)
    assert [m.post.id for m in result.matches] == ["4", "1"]
    assert all(m.matched_at == 100.0 for m in result.matches)
    assert result.used_fallback is False


def test_rescore_keeps_status_and_drops_below_threshold():
    kept = MatchResult(post=make_post("1", "rust compilers"), score=0.9, status="replied", draft_reply="hi")
    dropped = MatchResult(post=make_post("2", "gardening tips"), score=0.9)

    result = rescore_matches([kept, dropped], {"rust"}, threshold=0.3, max_posts=10)

    assert [m.post.id for m in result.matches] == ["1"]
    assert result.matches[0].status == "replied"
    assert result.matches[0].draft_reply == "hi"
    assert result.matches[0].matched_keywords == ["rust"]


def test_extracted_keywords_drive_scoring():
    feed = parse_feed(
        "<rss><channel><title>Blog</title><item><title>Observability pipelines</title>"
        "<category>OpenTelemetry</category></item></channel></rss>"
    )
    post = make_post("1", "Shipping our OpenTelemetry observability pipelines today")

    score, matched = score_post(post, sorted(extract_keywords(feed)))

    assert matched == ["observability", "opentelemetry", "pipelines"]
    assert score == pytest.approx(3 / 5 * 0.6 + 0.4)
