"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, automatic API test
skipping, and a fake Anthropic SDK client. All fixtures here are autouse
unless noted.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from castor.client import AnthropicChatClient

CLAUDE_MODEL = "claude-sonnet-4-20250514"

# =============================================================================
# Test Doubles
# =============================================================================


class FakeEventStream:
    """Async-iterable stand-in for the SDK's ``AsyncStream``.

    Exception instances in ``events`` are raised when reached, to simulate a
    connection dropping mid-stream.
    """

    def __init__(self, events: list[Any]) -> None:
        self._events = list(events)
        self.closed = False
        self.consumed = 0

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for event in self._events:
            if isinstance(event, BaseException):
                raise event
            self.consumed += 1
            yield event

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeMessages:
    """Records ``messages.create`` kwargs and replays a configured outcome."""

    response: Any = None
    events: list[Any] = field(default_factory=list)
    error: BaseException | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)
    streams: list[FakeEventStream] = field(default_factory=list)

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            stream = FakeEventStream(self.events)
            self.streams.append(stream)
            return stream
        return self.response


@dataclass
class FakeAnthropic:
    """Minimal ``AsyncAnthropic`` double: only ``messages`` and ``close``."""

    messages: FakeMessages = field(default_factory=FakeMessages)
    closed: bool = False

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_anthropic() -> FakeAnthropic:
    """Fake SDK client (not autouse)."""
    return FakeAnthropic()


@pytest.fixture
def client(fake_anthropic: FakeAnthropic) -> AnthropicChatClient:
    """Chat client wired to ``fake_anthropic`` (not autouse)."""
    return AnthropicChatClient(anthropic_client=fake_anthropic)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_env(request, monkeypatch):
    """Ensure a clean credentials environment for each test.

    Clears ANTHROPIC_* and CASTOR_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("ANTHROPIC_", "CASTOR_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


@pytest.fixture
def anthropic_api_key():
    """Return ANTHROPIC_API_KEY or skip the test if unavailable."""
    key = os.getenv("ANTHROPIC_API_KEY")
    if not key:
        pytest.skip("ANTHROPIC_API_KEY not set")
    return key
