"""Tests for error classification helpers."""

from __future__ import annotations

import pytest

from reply_queue.errors import (
    USER_ACTION_KINDS,
    ApiResult,
    AuthError,
    ErrorKind,
    FeedFetchError,
    InsufficientBalanceError,
    ParseError,
    ProtocolError,
    RateLimitError,
    ServerError,
    user_message,
)


def test_api_result_carries_either_value_or_error():
    good = ApiResult(value="text")
    bad = ApiResult(error=ServerError("down", 503))

    assert good.ok and good.kind is None and good.unwrap() == "text"
    assert not bad.ok and bad.kind is ErrorKind.SERVER
    with pytest.raises(ServerError):
        bad.unwrap()


def test_only_auth_and_balance_need_user_action():
    assert USER_ACTION_KINDS == {ErrorKind.AUTH, ErrorKind.INSUFFICIENT_BALANCE}
    assert RateLimitError("slow").retryable is True
    assert AuthError("no").retryable is False


def test_balance_error_serializes_token_figures():
    payload = InsufficientBalanceError("pay", 16000, 500).to_dict()

    assert payload["kind"] == "insufficient_balance"
    assert payload["status_code"] == 402
    assert (payload["requested_tokens"], payload["available_tokens"]) == (16000, 500)


@pytest.mark.parametrize(
    "error, fragment",
    [
        (AuthError("x", 401), "API key"),
        (InsufficientBalanceError("x", 16000, 500), "16000 tokens but only 500"),
        (InsufficientBalanceError("x"), "add credits"),
        (RateLimitError("x"), "Rate limit"),
        (ServerError("x", 502), "(502)"),
        (ProtocolError("Unexpected shape"), "Unexpected shape"),
        (ParseError("no channel"), "Not a valid RSS or Atom feed"),
        (FeedFetchError("HTTP 404: Not Found", url="https://b.example.com/rss"), "https://b.example.com/rss"),
    ],
)
def test_user_messages_are_actionable(error, fragment):
    assert fragment in user_message(error)


def test_balance_message_depends_on_the_error_class_only():
    error = InsufficientBalanceError("x", 100, 5)

    assert "100 tokens but only 5" in user_message(error)
    assert user_message(ProtocolError("x", 402)) == "x"
