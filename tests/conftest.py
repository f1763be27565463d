"""
Shared fakes for unit and API tests.

Everything runs in-process: MemoryStore for persistence, FakeLLM for text
generation, EventRecorder in place of a socket.
"""

import asyncio
from typing import Any

import pytest

from src.core import LLMError, Settings, TextGenerator, User
from src.storage import MemoryStore


class FakeLLM(TextGenerator):
    """Deterministic generator; can fail or block for chosen agents."""

    provider = "fake"

    def __init__(self, response: str = "next step", fail_for: tuple[str, ...] = ()):
        super().__init__(Settings())
        self.response = response
        self.fail_for = fail_for
        self.prompts: list[str] = []
        self.called = asyncio.Event()
        self.gate: asyncio.Event | None = None
        self.on_call = None

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.called.set()
        if self.on_call is not None:
            await self.on_call(prompt)
        if self.gate is not None:
            await self.gate.wait()
        for name in self.fail_for:
            if f"named {name} with" in prompt:
                raise LLMError(f"generation failed for {name}")
        return self.response


class EventRecorder:
    """Async ``send`` callable that keeps every event."""

    def __init__(self):
        self.events: list[dict[str, Any]] = []

    async def __call__(self, event: dict[str, Any]):
        self.events.append(event)

    def payloads(self, event_type: str) -> list[Any]:
        return [e["payload"] for e in self.events if e["type"] == event_type]

    def logs(self, log_type: str | None = None) -> list[dict[str, Any]]:
        return [p for p in self.payloads("log") if log_type is None or p["type"] == log_type]


@pytest.fixture
def store() -> MemoryStore:
    s = MemoryStore()
    s.users["user-a"] = User(id="user-a", username="alice")
    s.users["user-b"] = User(id="user-b", username="bob")
    return s


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        storage_backend="memory",
        llm_provider="ollama",
        tick_interval_seconds=3600,
        heartbeat_interval_seconds=3600,
    )
