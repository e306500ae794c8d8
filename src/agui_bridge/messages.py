"""Default mapping from engine messages to protocol messages.

Used for MESSAGES_SNAPSHOT when no custom ``message_mapper`` is configured.
Accepts dicts or objects exposing ``role``/``type``, ``content``, ``id``,
``tool_calls`` and ``tool_call_id``. Messages without an id get one derived
deterministically from the run id and their position.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from typing import Any

from .events import FunctionCall, Message, ToolCall
from .ids import deterministic_id

logger = logging.getLogger(__name__)

MessageMapper = Callable[[Any], Message | dict[str, Any] | None]

_ROLE_ALIASES = {
    "human": "user",
    "user": "user",
    "ai": "assistant",
    "assistant": "assistant",
    "system": "system",
    "developer": "developer",
    "tool": "tool",
    "function": "tool",
}


def field(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping or an attribute, whichever the object has."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _resolve_role(raw: Any) -> str | None:
    for key in ("role", "type"):
        value = field(raw, key)
        if isinstance(value, str) and value.lower() in _ROLE_ALIASES:
            return _ROLE_ALIASES[value.lower()]
    return None


def _map_tool_call(raw: Any) -> ToolCall | None:
    call_id = field(raw, "id")
    if not call_id:
        return None
    function = field(raw, "function")
    if function is not None:
        name = field(function, "name", "")
        arguments = field(function, "arguments", "")
    else:
        name = field(raw, "name", "")
        arguments = field(raw, "args", {})
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments, default=str)
    return ToolCall(id=call_id, function=FunctionCall(name=name or "", arguments=arguments))


def to_protocol_message(raw: Any, fallback_id: str) -> Message | None:
    """Map one engine message to a protocol message.

    Returns:
        The mapped message, or None if the role cannot be determined
    """
    if isinstance(raw, Message):
        return raw

    role = _resolve_role(raw)
    if role is None:
        logger.debug(f"Skipping message with unknown role: {type(raw).__name__}")
        return None

    content = field(raw, "content")
    if content is not None and not isinstance(content, str):
        content = json.dumps(content, default=str)

    tool_calls = None
    if role == "assistant":
        raw_calls = field(raw, "tool_calls") or field(field(raw, "kwargs"), "tool_calls")
        mapped = [call for call in (_map_tool_call(c) for c in raw_calls or []) if call]
        tool_calls = mapped or None

    return Message(
        id=field(raw, "id") or fallback_id,
        role=role,
        content=content,
        name=field(raw, "name"),
        tool_calls=tool_calls,
        tool_call_id=field(raw, "tool_call_id") if role == "tool" else None,
    )


def map_messages(
    messages: Iterable[Any],
    run_id: str,
    mapper: MessageMapper | None = None,
) -> list[Message]:
    """Map a conversation to protocol messages.

    Args:
        messages: Engine messages in conversation order
        run_id: Run id used to synthesize missing message ids
        mapper: Optional custom mapper returning a Message, a dict, or None

    Returns:
        Mapped messages; unmappable entries are skipped
    """
    result: list[Message] = []
    for position, raw in enumerate(messages):
        fallback_id = deterministic_id(f"{run_id}:messages", position)
        if mapper is not None:
            mapped = mapper(raw)
            if isinstance(mapped, dict):
                mapped = Message.model_validate({"id": fallback_id, **mapped})
        else:
            mapped = to_protocol_message(raw, fallback_id)
        if mapped is not None:
            result.append(mapped)
    return result
