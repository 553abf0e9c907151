"""Tests for Langfuse tracing setup behavior."""

from __future__ import annotations

import sys
import types

from reply_queue.config import LangfuseConfig
from reply_queue.llm import tracing


class DummySpan:
    def __init__(self, log: list):
        self.log = log

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.log.append(("exit",))
        return False

    def update(self, **kwargs):
        self.log.append(("update", kwargs))


def _install_dummy(monkeypatch) -> dict:
    captured: dict = {"spans": [], "log": []}

    class DummyLangfuse:
        def __init__(self, **kwargs):
            captured["init"] = kwargs

        def start_as_current_span(self, name, input=None, metadata=None):
            captured["spans"].append({"name": name, "input": input, "metadata": metadata})
            return DummySpan(captured["log"])

        def flush(self):
            captured["flushed"] = True

    monkeypatch.setitem(sys.modules, "langfuse", types.SimpleNamespace(Langfuse=DummyLangfuse))
    return captured


def test_setup_langfuse_reads_keys_from_env(monkeypatch):
    captured = _install_dummy(monkeypatch)
    monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk-test")
    monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk-test")
    monkeypatch.setenv("LANGFUSE_HOST", "https://us.cloud.langfuse.com")

    tracing.setup_langfuse(LangfuseConfig(enabled=True, environment="dev"))

    assert captured["init"]["public_key"] == "pk-test"
    assert captured["init"]["secret_key"] == "sk-test"
    assert captured["init"]["host"] == "https://us.cloud.langfuse.com"
    assert captured["init"]["environment"] == "dev"
    assert tracing.get_tracer() is not None


def test_setup_langfuse_disables_tracer_when_keys_missing(monkeypatch):
    _install_dummy(monkeypatch)
    monkeypatch.delenv("LANGFUSE_PUBLIC_KEY", raising=False)
    monkeypatch.delenv("LANGFUSE_SECRET_KEY", raising=False)

    tracing.setup_langfuse(LangfuseConfig(enabled=True))

    assert tracing.get_tracer() is None


def test_disabled_tracing_yields_no_span():
    tracing.setup_langfuse(LangfuseConfig(enabled=False))

    with tracing.start_span("ai_match", kind="llm", input_value="prompt") as span:
        tracing.set_span_output(span, "ignored")

    assert span is None


def test_span_payloads_are_redacted_and_truncated(monkeypatch):
    captured = _install_dummy(monkeypatch)
    tracing.setup_langfuse(
        LangfuseConfig(enabled=True, public_key="pk", secret_key="sk", max_text_chars=40)
    )

    with tracing.start_span(
        "ai_match",
        kind="llm",
        input_value="see https://blog.example.com/post " + "x" * 100,
        attributes={"model": "m", "skipped": None, "limits": [1, 2]},
    ) as span:
        tracing.set_span_output(span, {"results": []})
        tracing.record_span_error(span, RuntimeError("boom"))
    tracing.flush()

    started = captured["spans"][0]
    assert "https://blog.example.com" not in started["input"]
    assert len(started["input"]) <= 40 + len("...(truncated)")
    assert started["metadata"] == {"model": "m", "limits": "[1, 2]", "span.kind": "llm"}
    updates = [entry[1] for entry in captured["log"] if entry[0] == "update"]
    assert updates[0] == {"output": '{"results": []}'}
    assert updates[1] == {"level": "ERROR", "status_message": "boom"}
    assert captured["log"][-1] == ("exit",)
    assert captured["flushed"] is True
