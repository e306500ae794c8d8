"""AG-UI protocol event taxonomy.

Every event the bridge emits is one variant of a closed, discriminated union
keyed on ``type``. Variants are grouped into families:

- Lifecycle:  RUN_STARTED, RUN_FINISHED, RUN_ERROR, STEP_STARTED, STEP_FINISHED
- Text:       TEXT_MESSAGE_START / CONTENT / END, TEXT_MESSAGE_CHUNK
- Tool call:  TOOL_CALL_START / ARGS / END / RESULT, TOOL_CALL_CHUNK
- State:      STATE_SNAPSHOT, STATE_DELTA, MESSAGES_SNAPSHOT
- Reasoning:  THINKING_START / END, THINKING_TEXT_MESSAGE_START / CONTENT / END
- Activity:   ACTIVITY_SNAPSHOT, ACTIVITY_DELTA
- Special:    RAW, CUSTOM

Python attributes are snake_case; the wire format is camelCase, matching the
AG-UI protocol. Use ``to_wire()`` to get the JSON-ready dict.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    """All event types in the protocol."""

    # Lifecycle
    RUN_STARTED = "RUN_STARTED"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_ERROR = "RUN_ERROR"
    STEP_STARTED = "STEP_STARTED"
    STEP_FINISHED = "STEP_FINISHED"

    # Text messages
    TEXT_MESSAGE_START = "TEXT_MESSAGE_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TEXT_MESSAGE_END = "TEXT_MESSAGE_END"
    TEXT_MESSAGE_CHUNK = "TEXT_MESSAGE_CHUNK"

    # Tool calls
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS = "TOOL_CALL_ARGS"
    TOOL_CALL_END = "TOOL_CALL_END"
    TOOL_CALL_RESULT = "TOOL_CALL_RESULT"
    TOOL_CALL_CHUNK = "TOOL_CALL_CHUNK"

    # State
    STATE_SNAPSHOT = "STATE_SNAPSHOT"
    STATE_DELTA = "STATE_DELTA"
    MESSAGES_SNAPSHOT = "MESSAGES_SNAPSHOT"

    # Reasoning
    THINKING_START = "THINKING_START"
    THINKING_END = "THINKING_END"
    THINKING_TEXT_MESSAGE_START = "THINKING_TEXT_MESSAGE_START"
    THINKING_TEXT_MESSAGE_CONTENT = "THINKING_TEXT_MESSAGE_CONTENT"
    THINKING_TEXT_MESSAGE_END = "THINKING_TEXT_MESSAGE_END"

    # Activity
    ACTIVITY_SNAPSHOT = "ACTIVITY_SNAPSHOT"
    ACTIVITY_DELTA = "ACTIVITY_DELTA"

    # Special
    RAW = "RAW"
    CUSTOM = "CUSTOM"


Role = Literal["developer", "system", "assistant", "user", "tool"]


class ProtocolModel(BaseModel):
    """Base model with camelCase wire aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Messages
# =============================================================================


class FunctionCall(ProtocolModel):
    """Name and JSON-encoded arguments of a function call."""

    name: str
    arguments: str


class ToolCall(ProtocolModel):
    """A tool call attached to an assistant message."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class Message(ProtocolModel):
    """Protocol-facing conversation message."""

    id: str
    role: Role
    content: str | None = None
    name: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None


# =============================================================================
# Base event
# =============================================================================


class BaseEvent(ProtocolModel):
    """Fields shared by every event variant."""

    type: EventType
    timestamp: int | None = None  # epoch milliseconds

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset optionals omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Lifecycle events
# =============================================================================


class RunStartedEvent(BaseEvent):
    type: Literal["RUN_STARTED"] = "RUN_STARTED"
    thread_id: str | None = None
    run_id: str
    parent_run_id: str | None = None
    input: Any | None = None


class RunFinishedEvent(BaseEvent):
    type: Literal["RUN_FINISHED"] = "RUN_FINISHED"
    thread_id: str | None = None
    run_id: str | None = None
    result: Any | None = None


class RunErrorEvent(BaseEvent):
    """Terminal error for a run.

    ``message``, ``code`` and ``stack`` are each optional because the amount
    of detail exposed to the UI is configurable.
    """

    type: Literal["RUN_ERROR"] = "RUN_ERROR"
    message: str | None = None
    code: str | None = None
    stack: str | None = None


class StepStartedEvent(BaseEvent):
    type: Literal["STEP_STARTED"] = "STEP_STARTED"
    step_name: str


class StepFinishedEvent(BaseEvent):
    type: Literal["STEP_FINISHED"] = "STEP_FINISHED"
    step_name: str


# =============================================================================
# Text message events
# =============================================================================


class TextMessageStartEvent(BaseEvent):
    type: Literal["TEXT_MESSAGE_START"] = "TEXT_MESSAGE_START"
    message_id: str
    role: Role = "assistant"


class TextMessageContentEvent(BaseEvent):
    type: Literal["TEXT_MESSAGE_CONTENT"] = "TEXT_MESSAGE_CONTENT"
    message_id: str
    delta: str


class TextMessageEndEvent(BaseEvent):
    type: Literal["TEXT_MESSAGE_END"] = "TEXT_MESSAGE_END"
    message_id: str


class TextMessageChunkEvent(BaseEvent):
    """Convenience form expanded into start/content/end before delivery."""

    type: Literal["TEXT_MESSAGE_CHUNK"] = "TEXT_MESSAGE_CHUNK"
    message_id: str | None = None
    role: Role | None = None
    delta: str | None = None


# =============================================================================
# Tool call events
# =============================================================================


class ToolCallStartEvent(BaseEvent):
    type: Literal["TOOL_CALL_START"] = "TOOL_CALL_START"
    tool_call_id: str
    tool_call_name: str
    parent_message_id: str | None = None


class ToolCallArgsEvent(BaseEvent):
    type: Literal["TOOL_CALL_ARGS"] = "TOOL_CALL_ARGS"
    tool_call_id: str
    delta: str


class ToolCallEndEvent(BaseEvent):
    type: Literal["TOOL_CALL_END"] = "TOOL_CALL_END"
    tool_call_id: str


class ToolCallResultEvent(BaseEvent):
    type: Literal["TOOL_CALL_RESULT"] = "TOOL_CALL_RESULT"
    message_id: str
    tool_call_id: str
    content: str
    role: Literal["tool"] | None = "tool"


class ToolCallChunkEvent(BaseEvent):
    """Convenience form expanded into start/args/end before delivery."""

    type: Literal["TOOL_CALL_CHUNK"] = "TOOL_CALL_CHUNK"
    tool_call_id: str | None = None
    tool_call_name: str | None = None
    parent_message_id: str | None = None
    delta: str | None = None


# =============================================================================
# State events
# =============================================================================


class StateSnapshotEvent(BaseEvent):
    type: Literal["STATE_SNAPSHOT"] = "STATE_SNAPSHOT"
    snapshot: Any


class StateDeltaEvent(BaseEvent):
    type: Literal["STATE_DELTA"] = "STATE_DELTA"
    delta: list[dict[str, Any]]  # RFC 6902 operations


class MessagesSnapshotEvent(BaseEvent):
    type: Literal["MESSAGES_SNAPSHOT"] = "MESSAGES_SNAPSHOT"
    messages: list[Message]


# =============================================================================
# Reasoning events
# =============================================================================


class ThinkingStartEvent(BaseEvent):
    type: Literal["THINKING_START"] = "THINKING_START"
    title: str | None = None


class ThinkingEndEvent(BaseEvent):
    type: Literal["THINKING_END"] = "THINKING_END"


class ThinkingTextMessageStartEvent(BaseEvent):
    type: Literal["THINKING_TEXT_MESSAGE_START"] = "THINKING_TEXT_MESSAGE_START"
    message_id: str | None = None


class ThinkingTextMessageContentEvent(BaseEvent):
    type: Literal["THINKING_TEXT_MESSAGE_CONTENT"] = "THINKING_TEXT_MESSAGE_CONTENT"
    message_id: str | None = None
    delta: str


class ThinkingTextMessageEndEvent(BaseEvent):
    type: Literal["THINKING_TEXT_MESSAGE_END"] = "THINKING_TEXT_MESSAGE_END"
    message_id: str | None = None


# =============================================================================
# Activity events
# =============================================================================


class ActivitySnapshotEvent(BaseEvent):
    type: Literal["ACTIVITY_SNAPSHOT"] = "ACTIVITY_SNAPSHOT"
    message_id: str
    activity_type: str
    content: dict[str, Any]
    replace: bool | None = None


class ActivityDeltaEvent(BaseEvent):
    type: Literal["ACTIVITY_DELTA"] = "ACTIVITY_DELTA"
    message_id: str
    activity_type: str
    patch: list[dict[str, Any]]


# =============================================================================
# Special events
# =============================================================================


class RawEvent(BaseEvent):
    type: Literal["RAW"] = "RAW"
    event: Any
    source: str | None = None


class CustomEvent(BaseEvent):
    type: Literal["CUSTOM"] = "CUSTOM"
    name: str
    value: Any | None = None


# =============================================================================
# Families and the closed union
# =============================================================================

LifecycleEvent = Union[
    RunStartedEvent,
    RunFinishedEvent,
    RunErrorEvent,
    StepStartedEvent,
    StepFinishedEvent,
]
TextMessageEvent = Union[
    TextMessageStartEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageChunkEvent,
]
ToolCallEvent = Union[
    ToolCallStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallChunkEvent,
]
StateEvent = Union[StateSnapshotEvent, StateDeltaEvent, MessagesSnapshotEvent]
ReasoningEvent = Union[
    ThinkingStartEvent,
    ThinkingEndEvent,
    ThinkingTextMessageStartEvent,
    ThinkingTextMessageContentEvent,
    ThinkingTextMessageEndEvent,
]
ActivityEvent = Union[ActivitySnapshotEvent, ActivityDeltaEvent]
SpecialEvent = Union[RawEvent, CustomEvent]

ProtocolEvent = Annotated[
    Union[
        LifecycleEvent,
        TextMessageEvent,
        ToolCallEvent,
        StateEvent,
        ReasoningEvent,
        ActivityEvent,
        SpecialEvent,
    ],
    Field(discriminator="type"),
]

EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(ProtocolEvent)

# Name of the CUSTOM event carrying one piece of an oversized tool result
LARGE_RESULT_CHUNK = "LARGE_RESULT_CHUNK"


def parse_event(data: dict[str, Any]) -> BaseEvent:
    """Validate a wire dict (camelCase or snake_case) into its event model.

    Raises:
        pydantic.ValidationError: If the dict matches no variant
    """
    return EVENT_ADAPTER.validate_python(data)
