from __future__ import annotations

import pytest

from helpers import FakeClock
from reply_queue.config import LangfuseConfig
from reply_queue.llm import tracing


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_tracing():
    yield
    tracing.setup_langfuse(LangfuseConfig())
