"""Streaming-callback adapter.

Receives the engine's observability callbacks (model invocations, tokens,
tool calls) and emits text message, reasoning and tool call events. The
callbacks never see agent state and carry their own invocation ids, so all
correlation goes through a ``CorrelationStore``:

- Model invocations are mapped to an authoritative run id (the id the
  lifecycle middleware knows), and their message id is derived from it with
  the same deterministic function the middleware uses.
- Streamed tool-call fragments are accumulated by the tool's own id until
  the tool actually starts, then flushed as one TOOL_CALL_ARGS.
- A tool start finds its parent message through the run id, so it works
  even after the model invocation that requested the tool has ended.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .cleaner import extract_tool_output
from .config import BridgeOptions
from .correlation import CorrelationStore
from .emission import SmartEmissionPolicy
from .errors import emission_guard
from .events import (
    BaseEvent,
    Role,
    TextMessageChunkEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ThinkingEndEvent,
    ThinkingStartEvent,
    ThinkingTextMessageContentEvent,
    ThinkingTextMessageEndEvent,
    ThinkingTextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from .ids import deterministic_id, now_ms
from .messages import field
from .normalizer import expand_event
from .transport.base import Transport

logger = logging.getLogger(__name__)

UNKNOWN_TOOL = "unknown_tool"

# Metadata keys carrying the authoritative run id, in priority order
RUN_ID_METADATA_KEYS = ("agui_run_id", "run_id")
MESSAGE_ID_METADATA_KEY = "agui_message_id"

_TOOL_NAME_ATTRIBUTES = ("name", "tool_name", "_name")


def coordination_run_id(metadata: dict[str, Any] | None) -> str | None:
    """Authoritative run id carried in callback metadata, if any."""
    if not metadata:
        return None
    for key in RUN_ID_METADATA_KEYS:
        value = metadata.get(key)
        if isinstance(value, str) and value:
            return value
    value = field(metadata.get("configurable"), "run_id")
    return value if isinstance(value, str) and value else None


def _tool_object_name(tool: Any) -> str | None:
    name = field(field(tool, "kwargs"), "name")
    if name:
        return name
    for attribute in _TOOL_NAME_ATTRIBUTES:
        name = field(tool, attribute)
        if isinstance(name, str) and name:
            return name
    func = field(tool, "func")
    return getattr(func, "__name__", None) if func is not None else None


def _parse_tool_input(input_str: Any) -> tuple[str, dict[str, Any] | None]:
    """Return the input as text plus its parsed JSON object (if it is one)."""
    if isinstance(input_str, dict):
        return json.dumps(input_str, default=str), input_str
    text = input_str if isinstance(input_str, str) else str(input_str or "")
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text, None
    return text, parsed if isinstance(parsed, dict) else None


def _final_tool_calls(output: Any) -> list[Any]:
    """Tool calls requested by a finished model invocation."""
    calls = field(output, "tool_calls") or field(field(output, "kwargs"), "tool_calls")
    if calls:
        return list(calls)
    generations = field(output, "generations")
    if not generations:
        return []
    first = generations[0]
    if isinstance(first, list):
        first = first[0] if first else None
    message = field(first, "message")
    calls = field(message, "tool_calls") or field(field(message, "kwargs"), "tool_calls")
    return list(calls or [])


class AGUICallbackHandler:
    """Observability callbacks emitting streaming events.

    Every callback is fail-safe: emission problems are logged and never
    propagate into the engine. Callbacks for invocations the handler does
    not know about are silent no-ops.
    """

    name = "agui-callbacks"

    def __init__(self, transport: Transport, options: BridgeOptions | None = None):
        self.transport = transport
        self.options = options or BridgeOptions()
        self.store = CorrelationStore()
        self.policy = SmartEmissionPolicy(
            max_payload_size=self.options.max_ui_payload_size,
            chunking_enabled=self.options.chunk_large_results,
        )

    def _emit(self, event: BaseEvent) -> None:
        self.transport.emit(event)

    def _authoritative_run_id(self, invocation_id: str, parent_invocation_id: str | None) -> str:
        return (
            self.store.agent_run_ids.get(invocation_id)
            or self.store.parent_to_authoritative.get(parent_invocation_id)
            or parent_invocation_id
            or invocation_id
        )

    # -------------------------------------------------------------------------
    # Convenience chunk emitters
    # -------------------------------------------------------------------------

    def emit_text_chunk(
        self,
        message_id: str | None,
        role: Role | None = "assistant",
        delta: str | None = None,
    ) -> None:
        """Emit a whole text message as start/content/end in one call."""
        chunk = TextMessageChunkEvent(
            message_id=message_id, role=role, delta=delta, timestamp=now_ms()
        )
        with emission_guard("emit text chunk"):
            for event in expand_event(chunk):
                self._emit(event)

    def emit_tool_chunk(
        self,
        tool_call_id: str | None,
        tool_call_name: str | None,
        delta: str | None = None,
        parent_message_id: str | None = None,
    ) -> None:
        """Emit a whole tool call as start/args/end in one call."""
        chunk = ToolCallChunkEvent(
            tool_call_id=tool_call_id,
            tool_call_name=tool_call_name,
            parent_message_id=parent_message_id,
            delta=delta,
            timestamp=now_ms(),
        )
        with emission_guard("emit tool chunk"):
            for event in expand_event(chunk):
                self._emit(event)

    # -------------------------------------------------------------------------
    # Model invocation callbacks
    # -------------------------------------------------------------------------

    async def on_invocation_start(
        self,
        payload: Any,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Open the assistant message for a model invocation."""
        store = self.store
        run_id = (
            coordination_run_id(metadata)
            or store.parent_to_authoritative.get(parent_invocation_id)
            or parent_invocation_id
            or invocation_id
        )
        store.agent_run_ids.set(invocation_id, run_id)
        if parent_invocation_id:
            store.parent_to_authoritative.set(parent_invocation_id, run_id)

        message_id = (metadata or {}).get(MESSAGE_ID_METADATA_KEY)
        if not message_id:
            turn = store.turn_counters.get(run_id) or 0
            store.turn_counters.set(run_id, turn + 1)
            message_id = deterministic_id(run_id, turn)

        store.message_ids.set(invocation_id, message_id)
        store.latest_message_ids.set(run_id, message_id)

        with emission_guard("emit TEXT_MESSAGE_START event"):
            self._emit(
                TextMessageStartEvent(message_id=message_id, role="assistant", timestamp=now_ms())
            )

    async def on_token(
        self,
        token: str,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        chunk: Any = None,
    ) -> None:
        """Stream a token, reasoning text, or tool-call fragments."""
        message_id = self.store.message_ids.get(invocation_id)
        if message_id is None:
            logger.debug(f"Token for unknown invocation {invocation_id}, dropping")
            return

        with emission_guard("handle token"):
            message = field(chunk, "message") or chunk
            extra = field(message, "additional_kwargs") or {}
            reasoning = field(extra, "reasoning_content") or field(extra, "reasoning")
            if reasoning and self.options.emit_reasoning:
                self._emit_reasoning(reasoning, invocation_id, parent_invocation_id)

            if token:
                self._emit(
                    TextMessageContentEvent(message_id=message_id, delta=token, timestamp=now_ms())
                )

            fragments = field(message, "tool_call_chunks")
            if fragments:
                self._accumulate_tool_fragments(fragments, invocation_id, parent_invocation_id)

    def _emit_reasoning(
        self, reasoning: Any, invocation_id: str, parent_invocation_id: str | None
    ) -> None:
        thinking_id = self.store.thinking_ids.get(invocation_id)
        if thinking_id is None:
            run_id = self._authoritative_run_id(invocation_id, parent_invocation_id)
            turn = max((self.store.turn_counters.get(run_id) or 1) - 1, 0)
            thinking_id = deterministic_id(f"{run_id}:thinking", turn)
            self.store.thinking_ids.set(invocation_id, thinking_id)
            self._emit(ThinkingStartEvent(timestamp=now_ms()))
            self._emit(ThinkingTextMessageStartEvent(message_id=thinking_id, timestamp=now_ms()))

        if isinstance(reasoning, str):
            delta = reasoning
        else:
            delta = field(reasoning, "text") or json.dumps(reasoning, default=str)
        self._emit(
            ThinkingTextMessageContentEvent(message_id=thinking_id, delta=delta, timestamp=now_ms())
        )

    def _close_thinking(self, thinking_id: str) -> None:
        self._emit(ThinkingTextMessageEndEvent(message_id=thinking_id, timestamp=now_ms()))
        self._emit(ThinkingEndEvent(timestamp=now_ms()))

    def _accumulate_tool_fragments(
        self, fragments: list[Any], invocation_id: str, parent_invocation_id: str | None
    ) -> None:
        """Accumulate streamed tool arguments by tool call id.

        Only the first fragment of a call carries its id; later fragments
        carry just the ``index`` and are resolved through ``tool_chunk_ids``.
        """
        store = self.store
        run_id = self._authoritative_run_id(invocation_id, parent_invocation_id)
        pending = store.pending_tool_calls.get(run_id) or []

        for position, fragment in enumerate(fragments):
            index = field(fragment, "index")
            chunk_key = f"{invocation_id}:{position if index is None else index}"
            tool_call_id = field(fragment, "id")
            if tool_call_id:
                store.tool_chunk_ids.set(chunk_key, tool_call_id)
            else:
                tool_call_id = store.tool_chunk_ids.get(chunk_key)
            if not tool_call_id:
                logger.debug(f"Tool call fragment {chunk_key} has no known id, skipping")
                continue

            name = field(fragment, "name")
            if name:
                store.tool_call_names.set(tool_call_id, name)

            args = field(fragment, "args")
            if args:
                previous = store.accumulated_args.get(tool_call_id) or ""
                store.accumulated_args.set(tool_call_id, previous + args)

            if tool_call_id not in pending:
                pending.append(tool_call_id)

        if pending:
            store.pending_tool_calls.set(run_id, pending)

    def _collect_final_tool_calls(
        self, output: Any, invocation_id: str, parent_invocation_id: str | None
    ) -> None:
        """Record tool calls from the final output that were not streamed."""
        calls = _final_tool_calls(output)
        if not calls:
            return
        store = self.store
        run_id = self._authoritative_run_id(invocation_id, parent_invocation_id)
        pending = store.pending_tool_calls.get(run_id) or []
        started = {tool_call_id for _, tool_call_id in store.tool_call_ids.items()}

        for call in calls:
            tool_call_id = field(call, "id")
            if not tool_call_id or tool_call_id in pending or tool_call_id in started:
                continue
            pending.append(tool_call_id)

            function = field(call, "function")
            if function is not None:
                name, args = field(function, "name"), field(function, "arguments")
            else:
                name, args = field(call, "name"), field(call, "args")
            if name:
                store.tool_call_names.set(tool_call_id, name)
            if args:
                if not isinstance(args, str):
                    args = json.dumps(args, default=str)
                store.accumulated_args.set(tool_call_id, args)

        if pending:
            store.pending_tool_calls.set(run_id, pending)

    def _forget_invocation(self, invocation_id: str) -> None:
        self.store.agent_run_ids.delete(invocation_id)
        prefix = f"{invocation_id}:"
        for key, _ in self.store.tool_chunk_ids.items():
            if key.startswith(prefix):
                self.store.tool_chunk_ids.delete(key)

    async def on_invocation_end(
        self,
        output: Any,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Close the assistant message and any open thinking block."""
        message_id = self.store.message_ids.pop(invocation_id)
        thinking_id = self.store.thinking_ids.pop(invocation_id)
        try:
            with emission_guard("collect final tool calls"):
                self._collect_final_tool_calls(output, invocation_id, parent_invocation_id)
            with emission_guard("emit TEXT_MESSAGE_END event"):
                if message_id:
                    self._emit(TextMessageEndEvent(message_id=message_id, timestamp=now_ms()))
                if thinking_id:
                    self._close_thinking(thinking_id)
        finally:
            self._forget_invocation(invocation_id)

    async def on_invocation_error(
        self,
        error: BaseException,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Close an open message after a failed invocation.

        Run-level error reporting belongs to the lifecycle middleware.
        """
        logger.debug(f"Invocation {invocation_id} failed: {error}")
        message_id = self.store.message_ids.pop(invocation_id)
        thinking_id = self.store.thinking_ids.pop(invocation_id)
        run_id = self._authoritative_run_id(invocation_id, parent_invocation_id)
        try:
            with emission_guard("close message after invocation error"):
                if message_id:
                    self._emit(TextMessageEndEvent(message_id=message_id, timestamp=now_ms()))
                if thinking_id:
                    self._close_thinking(thinking_id)
        finally:
            self.store.pending_tool_calls.delete(run_id)
            self._forget_invocation(invocation_id)

    # -------------------------------------------------------------------------
    # Tool callbacks
    # -------------------------------------------------------------------------

    def _match_accumulated_args(self, text: str, run_id: str | None) -> str | None:
        """Find a pending call of ``run_id`` whose streamed arguments match ``text``."""
        if not (text and run_id):
            return None
        for tool_call_id in self.store.pending_tool_calls.get(run_id) or []:
            args = self.store.accumulated_args.get(tool_call_id)
            if args and (args in text or text in args):
                return tool_call_id
        return None

    def _mark_started(self, run_id: str | None, tool_call_id: str) -> None:
        pending = self.store.pending_tool_calls.get(run_id)
        if not pending or tool_call_id not in pending:
            return
        pending.remove(tool_call_id)
        if not pending:
            self.store.pending_tool_calls.delete(run_id)

    async def on_tool_start(
        self,
        tool: Any,
        input_str: str,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        run_name: str | None = None,
    ) -> None:
        """Open a tool call and flush its accumulated arguments."""
        store = self.store
        metadata = metadata or {}
        text, parsed = _parse_tool_input(input_str)

        # Best effort: an explicit run id in metadata, else the parent chain
        run_id = (
            coordination_run_id(metadata)
            or store.parent_to_authoritative.get(parent_invocation_id)
            or parent_invocation_id
        )

        candidates = [metadata.get("tool_call_id")]
        if parsed:
            candidates += [parsed.get("tool_call_id"), parsed.get("id")]
        tool_call_id = next(
            (value for value in candidates if isinstance(value, str) and value), None
        )
        if not tool_call_id:
            tool_call_id = self._match_accumulated_args(text, run_id) or invocation_id

        stored_name = store.tool_call_names.get(tool_call_id)
        if stored_name == UNKNOWN_TOOL:
            stored_name = None
        tool_call_name = (
            run_name
            or _tool_object_name(tool)
            or stored_name
            or (parsed or {}).get("name")
            or UNKNOWN_TOOL
        )
        parent_message_id = store.latest_message_ids.get(run_id)

        store.tool_call_ids.set(invocation_id, tool_call_id)
        store.tool_call_names.set(tool_call_id, tool_call_name)
        if run_id:
            store.agent_run_ids.set(invocation_id, run_id)
        self._mark_started(run_id, tool_call_id)

        with emission_guard("emit TOOL_CALL_START event"):
            self._emit(
                ToolCallStartEvent(
                    tool_call_id=tool_call_id,
                    tool_call_name=tool_call_name,
                    parent_message_id=parent_message_id,
                    timestamp=now_ms(),
                )
            )
            args = store.accumulated_args.pop(tool_call_id)
            if args:
                self._emit(
                    ToolCallArgsEvent(tool_call_id=tool_call_id, delta=args, timestamp=now_ms())
                )

    def _forget_tool(self, invocation_id: str, tool_call_id: str) -> None:
        store = self.store
        store.agent_run_ids.delete(invocation_id)
        store.tool_call_names.delete(tool_call_id)
        store.accumulated_args.delete(tool_call_id)

    async def on_tool_end(
        self,
        output: Any,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Close the tool call and emit its result under the emission policy."""
        tool_call_id = self.store.tool_call_ids.pop(invocation_id)
        if tool_call_id is None:
            logger.debug(f"Tool end for untracked invocation {invocation_id}, ignoring")
            return
        try:
            with emission_guard("emit tool end events"):
                self._emit(ToolCallEndEvent(tool_call_id=tool_call_id, timestamp=now_ms()))
                if self.options.emit_tool_results:
                    content = extract_tool_output(output)
                    for event in self.policy.result_events(content, tool_call_id):
                        self._emit(event)
        finally:
            self._forget_tool(invocation_id, tool_call_id)

    async def on_tool_error(
        self,
        error: BaseException,
        invocation_id: str,
        parent_invocation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Close a started tool call after the tool failed."""
        tool_call_id = self.store.tool_call_ids.pop(invocation_id)
        if tool_call_id is None:
            logger.debug(f"Tool error for untracked invocation {invocation_id}, ignoring")
            return
        logger.debug(f"Tool call {tool_call_id} failed: {error}")
        try:
            with emission_guard("emit TOOL_CALL_END event"):
                self._emit(ToolCallEndEvent(tool_call_id=tool_call_id, timestamp=now_ms()))
        finally:
            self._forget_tool(invocation_id, tool_call_id)

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def close_open(self, run_id: str | None = None) -> int:
        """Emit end events for everything still open.

        Covers open messages, thinking blocks and started tool calls,
        optionally only those belonging to ``run_id``. Their entries are
        removed afterwards.

        Returns:
            Number of lifecycles closed
        """
        store = self.store
        closed = 0

        def belongs(invocation_id: str) -> bool:
            return run_id is None or store.agent_run_ids.get(invocation_id) == run_id

        with emission_guard("close open lifecycles"):
            for invocation_id, tool_call_id in store.tool_call_ids.items():
                if not belongs(invocation_id):
                    continue
                store.tool_call_ids.delete(invocation_id)
                self._emit(ToolCallEndEvent(tool_call_id=tool_call_id, timestamp=now_ms()))
                self._forget_tool(invocation_id, tool_call_id)
                closed += 1

            for invocation_id, thinking_id in store.thinking_ids.items():
                if not belongs(invocation_id):
                    continue
                store.thinking_ids.delete(invocation_id)
                self._close_thinking(thinking_id)
                closed += 1

            for invocation_id, message_id in store.message_ids.items():
                if not belongs(invocation_id):
                    continue
                store.message_ids.delete(invocation_id)
                self._emit(TextMessageEndEvent(message_id=message_id, timestamp=now_ms()))
                self._forget_invocation(invocation_id)
                closed += 1

        if closed:
            logger.debug(f"Closed {closed} open lifecycles (run {run_id})")
        return closed

    def release_run(self, run_id: str) -> None:
        """Drop every entry keyed by, or pointing at, ``run_id``.

        Called when the run finishes. Invocations still open keep their run
        mapping so ``close_open(run_id)`` can end them afterwards.
        """
        store = self.store
        started = {tool_call_id for _, tool_call_id in store.tool_call_ids.items()}
        for tool_call_id in store.pending_tool_calls.pop(run_id) or []:
            store.accumulated_args.delete(tool_call_id)
            if tool_call_id not in started:
                store.tool_call_names.delete(tool_call_id)
        store.latest_message_ids.delete(run_id)
        store.turn_counters.delete(run_id)
        for key, value in store.parent_to_authoritative.items():
            if value == run_id:
                store.parent_to_authoritative.delete(key)
        open_invocations = {
            key
            for table in (store.tool_call_ids, store.thinking_ids, store.message_ids)
            for key, _ in table.items()
        }
        for key, value in store.agent_run_ids.items():
            if value == run_id and key not in open_invocations:
                store.agent_run_ids.delete(key)
        logger.debug(f"Released correlation state for run {run_id}")

    def dispose(self) -> None:
        """Clear all correlation state."""
        self.store.dispose()
