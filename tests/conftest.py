"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from agui_bridge.config import BridgeOptions
from agui_bridge.engine import AgentRuntime
from agui_bridge.events import BaseEvent


class RecordingTransport:
    """In-memory transport that keeps every emitted event."""

    def __init__(self) -> None:
        self.events: list[BaseEvent] = []

    def emit(self, event: BaseEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, event_type: str) -> list[Any]:
        return [event for event in self.events if event.type == event_type]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def transport() -> RecordingTransport:
    """Recording transport for adapter tests."""
    return RecordingTransport()


@pytest.fixture
def no_snapshots() -> BridgeOptions:
    """Options with state snapshots turned off."""
    return BridgeOptions(emit_state_snapshots="none")


def _make_runtime(
    run_id: str | None = "run-1", thread_id: str | None = "thread-1", **extra: Any
) -> AgentRuntime:
    configurable: dict[str, Any] = {}
    if run_id is not None:
        configurable["run_id"] = run_id
    if thread_id is not None:
        configurable["thread_id"] = thread_id
    return AgentRuntime(configurable=configurable, **extra)


@pytest.fixture
def make_runtime() -> Any:
    """Factory for runtime contexts carrying ids the way engines pass them."""
    return _make_runtime


@pytest.fixture
def runtime() -> AgentRuntime:
    """Runtime for run ``run-1`` in thread ``thread-1``."""
    return _make_runtime()
