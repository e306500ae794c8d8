"""Contracts between the bridge and the upstream agent engine.

The engine is a black box that calls two disjoint sets of extension points
during a run:

- Lifecycle hooks see agent/step boundaries and the full state, but never
  tokens.
- Observability callbacks see every token and tool invocation, but never
  state, and their invocation ids are not shared with the hooks.

The engine must keep invocation ids unique and pass the parent id for
nested invocations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class AgentRuntime:
    """Per-invocation runtime context handed to lifecycle hooks.

    Engines may pass this, any mapping with the same keys, or any object
    exposing ``configurable`` / ``context`` attributes.
    """

    configurable: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    model_name: str | None = None
    step_name: str | None = None


def _read(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


def runtime_value(runtime: Any, section: str, *keys: str) -> Any:
    """Return the first non-empty ``runtime.<section>.<key>`` among ``keys``.

    Also looks under ``runtime.config.<section>`` since some engines nest the
    per-call configuration there.
    """
    sources = [_read(runtime, section), _read(_read(runtime, "config"), section)]
    for source in sources:
        for key in keys:
            value = _read(source, key)
            if value:
                return value
    return None


def runtime_attr(runtime: Any, key: str) -> Any:
    """Read a top-level attribute or key from a runtime context."""
    return _read(runtime, key)


@runtime_checkable
class LifecycleHooks(Protocol):
    """State-aware hooks at agent and model-step boundaries."""

    async def before_agent(self, state: Any, runtime: Any) -> dict[str, Any]: ...

    async def before_model(self, state: Any, runtime: Any) -> dict[str, Any]: ...

    async def after_model(self, state: Any, runtime: Any) -> dict[str, Any]: ...

    async def after_agent(self, state: Any, runtime: Any) -> dict[str, Any]: ...


@runtime_checkable
class ObservabilityCallbacks(Protocol):
    """State-blind callbacks for model invocations, tokens and tools."""

    async def on_invocation_start(
        self,
        payload: Any,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def on_token(
        self,
        token: str,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        chunk: Any = None,
    ) -> None: ...

    async def on_invocation_end(
        self,
        output: Any,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def on_invocation_error(
        self,
        error: BaseException,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def on_tool_start(
        self,
        tool: Any,
        input_str: str,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        run_name: str | None = None,
    ) -> None: ...

    async def on_tool_end(
        self,
        output: Any,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def on_tool_error(
        self,
        error: BaseException,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...
