"""Tests for AI match passes, heat checks and suggestion generation."""

from __future__ import annotations

import asyncio
import json

import pytest

from helpers import ScriptedClient, make_feed, make_post
from reply_queue.config import MatchingConfig, PromptConfig
from reply_queue.core.context import RuntimeContext
from reply_queue.core.types import MatchResult
from reply_queue.errors import AuthError, InsufficientBalanceError, NetworkError, ServerError
from reply_queue.matching.orchestrator import AIMatchOrchestrator, MatchPreferences


def _reply(*results) -> str:
    return "Here you go:\n" + json.dumps({"results": list(results)}) + "\nLet me know if you need more."


def _orchestrator(client, clock, **matching) -> AIMatchOrchestrator:
    return AIMatchOrchestrator(client, RuntimeContext(clock=clock), MatchingConfig(**matching), PromptConfig())


POSTS = [
    make_post("1", "Profiling asyncio services is hard, any tips on tracing?"),
    make_post("2", "Look at my cat"),
]


def test_match_keeps_results_above_threshold_with_suggestions(clock):
    client = ScriptedClient(
        _reply(
            {"postId": "linkedin:1", "score": 0.82, "reason": "Asks about tracing", "suggestions": ["Try this", 3]},
            {"postId": "linkedin:2", "score": 0.1, "reason": "Cats"},
        )
    )
    orchestrator = _orchestrator(client, clock)

    result = asyncio.run(orchestrator.match_posts(POSTS, make_feed(), "https://blog.example.com"))

    assert result.used_fallback is False
    assert result.total_evaluated == 2
    assert len(result.matches) == 1
    match = result.matches[0]
    assert match.key == "linkedin:1"
    assert match.score == pytest.approx(0.82)
    assert match.reason == "Asks about tracing"
    assert match.matched_keywords == []
    assert [s.text for s in match.reply_suggestions] == ["Try this"]
    assert match.reply_suggestions[0].id.startswith("suggestion-")
    assert client.calls[0]["temperature"] == 0.7
    assert client.calls[0]["max_tokens"] == 16384


def test_malformed_entries_are_dropped_not_fatal(clock):
    client = ScriptedClient(
        _reply(
            {"postId": "linkedin:404", "score": 0.9},
            {"postId": "linkedin:2", "score": "high"},
            {"postId": "linkedin:2", "score": True},
            "not an object",
            {"postId": "linkedin:1", "score": 1.4},
        )
    )
    orchestrator = _orchestrator(client, clock)

    result = asyncio.run(orchestrator.match_posts(POSTS, make_feed(), "https://blog.example.com"))

    assert [m.key for m in result.matches] == ["linkedin:1"]
    assert result.matches[0].score == 1.0
    assert result.matches[0].reason == "AI-matched post"


def test_cached_posts_are_not_sent_again(clock):
    client = ScriptedClient(
        _reply({"postId": "linkedin:1", "score": 0.8, "reason": "r"}),
        _reply(),
    )
    orchestrator = _orchestrator(client, clock)
    feed = make_feed()

    asyncio.run(orchestrator.match_posts(POSTS[:1], feed, "https://blog.example.com"))
    second = asyncio.run(orchestrator.match_posts(POSTS, feed, "https://blog.example.com"))

    assert len(client.calls) == 2
    assert '"linkedin:1"' not in client.calls[1]["prompt"]
    assert '"linkedin:2"' in client.calls[1]["prompt"]
    assert [m.key for m in second.matches] == ["linkedin:1"]


def test_fully_cached_pass_makes_no_call(clock):
    client = ScriptedClient(_reply({"postId": "linkedin:1", "score": 0.8, "reason": "r"}))
    orchestrator = _orchestrator(client, clock)
    feed = make_feed()

    asyncio.run(orchestrator.match_posts(POSTS[:1], feed, "https://blog.example.com"))
    again = asyncio.run(orchestrator.match_posts(POSTS[:1], feed, "https://blog.example.com"))

    assert len(client.calls) == 1
    assert [m.key for m in again.matches] == ["linkedin:1"]


def test_cache_expires_after_ttl(clock):
    client = ScriptedClient(
        _reply({"postId": "linkedin:1", "score": 0.8, "reason": "r"}),
        _reply({"postId": "linkedin:1", "score": 0.6, "reason": "r2"}),
    )
    orchestrator = _orchestrator(client, clock, ai_cache_ttl_minutes=30)
    feed = make_feed()

    asyncio.run(orchestrator.match_posts(POSTS[:1], feed, "https://blog.example.com"))
    clock.advance(31 * 60)
    result = asyncio.run(orchestrator.match_posts(POSTS[:1], feed, "https://blog.example.com"))

    assert len(client.calls) == 2
    assert result.matches[0].reason == "r2"


def test_cache_key_is_composite(clock):
    linkedin = make_post("1", "asyncio tracing", platform="linkedin")
    x_post = make_post("1", "asyncio tracing", platform="x")
    client = ScriptedClient(
        _reply({"postId": "linkedin:1", "score": 0.8, "reason": "li"}),
        _reply({"postId": "x:1", "score": 0.7, "reason": "x"}),
    )
    orchestrator = _orchestrator(client, clock)
    feed = make_feed()

    asyncio.run(orchestrator.match_posts([linkedin], feed, "https://blog.example.com"))
    result = asyncio.run(orchestrator.match_posts([linkedin, x_post], feed, "https://blog.example.com"))

    assert len(client.calls) == 2
    assert sorted(m.key for m in result.matches) == ["linkedin:1", "x:1"]


def test_bare_post_id_in_reply_is_accepted_when_unambiguous(clock):
    client = ScriptedClient(_reply({"postId": "1", "score": 0.8, "reason": "r"}))
    orchestrator = _orchestrator(client, clock)

    result = asyncio.run(orchestrator.match_posts(POSTS, make_feed(), "https://blog.example.com"))

    assert [m.key for m in result.matches] == ["linkedin:1"]


@pytest.mark.parametrize("failure", [ServerError("down", 503), NetworkError("offline")])
def test_recoverable_failure_falls_back_to_keywords(clock, failure):
    client = ScriptedClient(failure)
    orchestrator = _orchestrator(client, clock)

    result = asyncio.run(orchestrator.match_posts(POSTS, make_feed(), "https://blog.example.com"))

    assert result.used_fallback is True
    assert "asyncio" in result.keywords
    assert [m.key for m in result.matches] == ["linkedin:1"]
    assert result.matches[0].matched_keywords
    assert result.total_evaluated == 2


def test_unparseable_reply_falls_back_to_keywords(clock):
    client = ScriptedClient("I could not decide, sorry.")
    orchestrator = _orchestrator(client, clock)

    result = asyncio.run(orchestrator.match_posts(POSTS, make_feed(), "https://blog.example.com"))

    assert result.used_fallback is True
    assert [m.key for m in result.matches] == ["linkedin:1"]


def test_valid_empty_reply_does_not_fall_back(clock):
    client = ScriptedClient(_reply())
    orchestrator = _orchestrator(client, clock)

    result = asyncio.run(orchestrator.match_posts(POSTS, make_feed(), "https://blog.example.com"))

    assert result.used_fallback is False
    assert result.matches == []


def test_fallback_keeps_cached_ai_matches(clock):
    client = ScriptedClient(
        _reply({"postId": "linkedin:2", "score": 0.9, "reason": "cats are relevant"}),
        ServerError("down", 500),
    )
    orchestrator = _orchestrator(client, clock)
    feed = make_feed()

    asyncio.run(orchestrator.match_posts(POSTS[1:], feed, "https://blog.example.com"))
    result = asyncio.run(orchestrator.match_posts(POSTS, feed, "https://blog.example.com"))

    assert result.used_fallback is True
    assert [m.key for m in result.matches] == ["linkedin:1", "linkedin:2"]
    assert result.matches[1].reason == "cats are relevant"


@pytest.mark.parametrize(
    "failure",
    [AuthError("bad key", 401), InsufficientBalanceError("top up", 16000, 500)],
)
def test_user_action_errors_propagate(clock, failure):
    client = ScriptedClient(failure)
    orchestrator = _orchestrator(client, clock)

    with pytest.raises(type(failure)) as excinfo:
        asyncio.run(orchestrator.match_posts(POSTS, make_feed(), "https://blog.example.com"))

    assert excinfo.value is failure


def test_preferences_override_threshold_and_cap(clock):
    client = ScriptedClient(
        _reply(
            {"postId": "linkedin:1", "score": 0.5, "reason": "a"},
            {"postId": "linkedin:2", "score": 0.45, "reason": "b"},
        )
    )
    orchestrator = _orchestrator(client, clock)

    result = asyncio.run(
        orchestrator.match_posts(
            POSTS,
            make_feed(),
            "https://blog.example.com",
            preferences=MatchPreferences(threshold=0.4, max_posts=1),
        )
    )

    assert [m.key for m in result.matches] == ["linkedin:1"]
    assert "score >= 0.4" in client.calls[0]["prompt"]


def test_prompt_carries_style_rules_and_truncated_content(clock):
    long_post = make_post("9", "x" * 800)
    client = ScriptedClient(_reply())
    orchestrator = AIMatchOrchestrator(
        client,
        RuntimeContext(clock=clock),
        MatchingConfig(),
        PromptConfig(post_content_char_limit=100, max_style_examples=1),
    )

    asyncio.run(
        orchestrator.match_posts(
            [long_post],
            make_feed(),
            "https://blog.example.com",
            style_examples=["Short and friendly", "Never shown"],
            rules="No emojis",
        )
    )

    prompt = client.calls[0]["prompt"]
    assert '1. "Short and friendly"' in prompt
    assert "Never shown" not in prompt
    assert "Communication Rules (MUST follow):\nNo emojis" in prompt
    assert "x" * 100 in prompt
    assert "x" * 101 not in prompt
    assert "https://blog.example.com/async-tooling" in prompt


def _matches():
    return [
        MatchResult(post=POSTS[0], score=0.8),
        MatchResult(post=POSTS[1], score=0.5, status="replied"),
    ]


def test_heat_check_attaches_tones(clock):
    client = ScriptedClient(
        _reply(
            {"postId": "linkedin:1", "tone": "question", "reason": "asks for tips", "recommended": True},
            {"postId": "linkedin:2", "tone": "sarcastic", "recommended": "true"},
        )
    )
    orchestrator = _orchestrator(client, clock)

    updated = asyncio.run(orchestrator.heat_check_posts(_matches()))

    assert updated[0].tone.tone == "question"
    assert updated[0].tone.recommended is True
    assert updated[1].tone.tone == "neutral"
    assert updated[1].tone.reason == "Analyzed by AI"
    assert updated[1].tone.recommended is False
    assert updated[1].status == "replied"
    assert client.calls[0]["temperature"] == 0.3


def test_heat_check_uses_its_own_cache(clock):
    client = ScriptedClient(_reply({"postId": "linkedin:1", "tone": "positive", "recommended": True}))
    orchestrator = _orchestrator(client, clock)

    asyncio.run(orchestrator.heat_check_posts(_matches()[:1]))
    again = asyncio.run(orchestrator.heat_check_posts(_matches()[:1]))

    assert len(client.calls) == 1
    assert again[0].tone.tone == "positive"
    assert len(orchestrator.context.match_cache) == 0


def test_heat_check_failure_omits_tone(clock):
    client = ScriptedClient(ServerError("down", 500))
    orchestrator = _orchestrator(client, clock)

    updated = asyncio.run(orchestrator.heat_check_posts(_matches()))

    assert [m.tone for m in updated] == [None, None]


def test_heat_check_propagates_balance_errors(clock):
    client = ScriptedClient(InsufficientBalanceError("top up"))
    orchestrator = _orchestrator(client, clock)

    with pytest.raises(InsufficientBalanceError):
        asyncio.run(orchestrator.heat_check_posts(_matches()))


def test_generate_reply_suggestions(clock):
    client = ScriptedClient('```json\n{"suggestions": ["One", "Two", ""]}\n```')
    orchestrator = _orchestrator(client, clock)

    suggestions = asyncio.run(
        orchestrator.generate_reply_suggestions(POSTS[0], make_feed(), "https://blog.example.com")
    )

    assert [s.text for s in suggestions] == ["One", "Two"]
    assert all(s.generated_at == clock.now() for s in suggestions)
    assert len({s.id for s in suggestions}) == 2
    assert client.calls[0]["temperature"] == 0.8


def test_generate_reply_suggestions_returns_empty_on_failure(clock):
    orchestrator = _orchestrator(ScriptedClient(NetworkError("offline")), clock)

    assert asyncio.run(orchestrator.generate_reply_suggestions(POSTS[0], make_feed(), "u")) == []


def test_generate_reply_suggestions_propagates_auth_errors(clock):
    orchestrator = _orchestrator(ScriptedClient(AuthError("bad key", 401)), clock)

    with pytest.raises(AuthError):
        asyncio.run(orchestrator.generate_reply_suggestions(POSTS[0], make_feed(), "u"))


def test_clear_caches(clock):
    client = ScriptedClient(
        _reply({"postId": "linkedin:1", "score": 0.8, "reason": "r"}),
        _reply({"postId": "linkedin:1", "score": 0.8, "reason": "r"}),
    )
    orchestrator = _orchestrator(client, clock)

    asyncio.run(orchestrator.match_posts(POSTS[:1], make_feed(), "u"))
    orchestrator.clear_match_cache()
    orchestrator.clear_tone_cache()
    asyncio.run(orchestrator.match_posts(POSTS[:1], make_feed(), "u"))

    assert len(client.calls) == 2
