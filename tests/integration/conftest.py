"""Fixtures for integration tests: a scripted engine driving both adapters."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from agui_bridge import AGUIBridge
from agui_bridge.engine import AgentRuntime

ScriptedRun = Callable[..., Awaitable[None]]


async def _scripted_run(
    bridge: AGUIBridge,
    run_id: str = "run-1",
    thread_id: str = "thread-1",
    tokens: tuple[str, ...] = ("The ", "answer ", "is"),
    tool_output: Any = "42",
) -> None:
    """Play one turn the way an engine calls its hooks and callbacks.

    The model streams ``tokens``, then calls ``calculator`` whose output is
    ``tool_output``.
    """
    runtime = AgentRuntime(configurable={"run_id": run_id, "thread_id": thread_id})
    state: dict[str, Any] = {"messages": [{"role": "user", "content": "What is 6 x 7?"}]}
    meta = {"run_id": run_id}
    middleware, handler = bridge.middleware, bridge.handler

    await middleware.before_agent(state, runtime)
    await middleware.before_model(state, runtime)

    await handler.on_invocation_start({}, "llm-1", "chain-1", meta)
    for token in tokens:
        await handler.on_token(token, "llm-1", "chain-1", meta)
    await handler.on_tool_start(
        {"name": "calculator"}, '{"expression": "6 * 7"}', "tool-1", "chain-1", meta
    )
    await handler.on_tool_end(tool_output, "tool-1", "chain-1", meta)
    await handler.on_invocation_end({}, "llm-1", "chain-1", meta)

    await middleware.after_model(state, runtime)
    state["messages"].append({"role": "assistant", "content": "".join(tokens) + " 42"})
    await middleware.after_agent(state, runtime)


@pytest.fixture
def scripted_run() -> ScriptedRun:
    """Coroutine function playing a single tool-using turn through a bridge."""
    return _scripted_run
