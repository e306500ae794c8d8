"""Expansion of convenience chunk events into canonical triples.

A producer may emit a single TEXT_MESSAGE_CHUNK or TOOL_CALL_CHUNK instead of
the explicit start/content/end lifecycle. Consumers only ever see the
canonical form.
"""

from __future__ import annotations

from .events import (
    BaseEvent,
    TextMessageChunkEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from .ids import generate_id


def expand_event(event: BaseEvent) -> list[BaseEvent]:
    """Expand a chunk event into its explicit counterparts.

    - Start is emitted only when the chunk carries identifying data
      (``role`` for text, ``tool_call_name`` for tools).
    - Content/args is emitted when a delta is present.
    - End is emitted only when both were present; a delta-only chunk is a
      continuation of an already-open lifecycle.

    A chunk with neither is returned unchanged. All other events pass
    through as ``[event]``, so the function is idempotent on canonical input.

    Args:
        event: Any protocol event

    Returns:
        List of canonical events, in emission order
    """
    match event:
        case TextMessageChunkEvent():
            return _expand_text_chunk(event)
        case ToolCallChunkEvent():
            return _expand_tool_chunk(event)
        case _:
            return [event]


def _expand_text_chunk(chunk: TextMessageChunkEvent) -> list[BaseEvent]:
    message_id = chunk.message_id or generate_id()
    results: list[BaseEvent] = []

    if chunk.role:
        results.append(
            TextMessageStartEvent(
                message_id=message_id, role=chunk.role, timestamp=chunk.timestamp
            )
        )

    if chunk.delta:
        results.append(
            TextMessageContentEvent(
                message_id=message_id, delta=chunk.delta, timestamp=chunk.timestamp
            )
        )

    if chunk.role and chunk.delta:
        results.append(TextMessageEndEvent(message_id=message_id, timestamp=chunk.timestamp))

    return results or [chunk]


def _expand_tool_chunk(chunk: ToolCallChunkEvent) -> list[BaseEvent]:
    tool_call_id = chunk.tool_call_id or generate_id()
    results: list[BaseEvent] = []

    if chunk.tool_call_name:
        results.append(
            ToolCallStartEvent(
                tool_call_id=tool_call_id,
                tool_call_name=chunk.tool_call_name,
                parent_message_id=chunk.parent_message_id,
                timestamp=chunk.timestamp,
            )
        )

    if chunk.delta:
        results.append(
            ToolCallArgsEvent(
                tool_call_id=tool_call_id, delta=chunk.delta, timestamp=chunk.timestamp
            )
        )

    if chunk.tool_call_name and chunk.delta:
        results.append(ToolCallEndEvent(tool_call_id=tool_call_id, timestamp=chunk.timestamp))

    return results or [chunk]
