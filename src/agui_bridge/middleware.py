"""Lifecycle-hook adapter.

Translates agent and model-step boundaries into run, step, state and
activity events. The hooks see the full agent state but never tokens; token
streaming is the callback handler's job. Both agree on each turn's message id
through ``deterministic_id(run_id, turn_index)``.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .cleaner import sanitize_for_transport
from .config import BridgeOptions
from .engine import runtime_attr, runtime_value
from .errors import ConfigurationError, emission_guard
from .events import (
    ActivityDeltaEvent,
    ActivitySnapshotEvent,
    BaseEvent,
    MessagesSnapshotEvent,
    RunErrorEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    StepFinishedEvent,
    StepStartedEvent,
)
from .ids import deterministic_id, now_ms
from .messages import field, map_messages
from .state_diff import compute_state_delta, to_jsonable
from .transport.base import Transport

logger = logging.getLogger(__name__)

AGENT_STEP_ACTIVITY = "AGENT_STEP"
AGENT_ERROR_CODE = "AGENT_EXECUTION_ERROR"

_INPUT_PREVIEW_LENGTH = 100


@dataclass
class RunRecord:
    """Per-run bookkeeping, dropped when the run finishes."""

    run_id: str
    thread_id: str | None = None
    turn: int = 0
    step_name: str | None = None
    message_id: str | None = None
    activity_id: str | None = None
    initial_snapshot: Any = None


def _last_message(state: Any) -> Any:
    messages = field(state, "messages")
    if isinstance(messages, list | tuple) and messages:
        return messages[-1]
    return None


def _input_preview(state: Any) -> str | None:
    content = field(_last_message(state), "content")
    if content is None:
        return None
    text = content if isinstance(content, str) else str(content)
    return text[:_INPUT_PREVIEW_LENGTH]


def _output_type(state: Any) -> str:
    message = _last_message(state)
    if field(message, "tool_calls") or field(field(message, "kwargs"), "tool_calls"):
        return "tool_calls"
    return "text"


class AGUIMiddleware:
    """Engine middleware emitting lifecycle events for each run.

    Every hook returns ``{}``: the middleware observes state, it never
    updates it. Runs are tracked by run id, so one instance may serve
    concurrent runs.
    """

    name = "agui-lifecycle"

    def __init__(
        self,
        transport: Transport,
        options: BridgeOptions | None = None,
        on_run_end: Callable[[str], None] | None = None,
    ):
        self.transport = transport
        self.options = options or BridgeOptions()
        self.on_run_end = on_run_end
        self._runs: dict[str, RunRecord] = {}

    # -------------------------------------------------------------------------
    # Identifier resolution
    # -------------------------------------------------------------------------

    def resolve_ids(self, runtime: Any) -> tuple[str | None, str | None]:
        """Resolve ``(thread_id, run_id)``: override > configurable > context."""
        thread_id = (
            self.options.thread_id_override
            or runtime_value(runtime, "configurable", "thread_id")
            or runtime_value(runtime, "context", "thread_id", "threadId")
        )
        run_id = (
            self.options.run_id_override
            or runtime_value(runtime, "configurable", "run_id")
            or runtime_value(runtime, "context", "run_id", "runId")
        )
        return thread_id, run_id

    def current_message_id(self, run_id: str) -> str | None:
        """Message id of the run's current model turn, if one is in progress."""
        record = self._runs.get(run_id)
        return record.message_id if record else None

    def release_run(self, run_id: str) -> None:
        """Forget a run whose ``after_agent`` hook never ran."""
        if self._runs.pop(run_id, None) is not None:
            logger.debug(f"Released lifecycle record for run {run_id}")

    @property
    def active_runs(self) -> list[str]:
        return list(self._runs)

    def _record(self, runtime: Any, hook: str) -> RunRecord | None:
        _, run_id = self.resolve_ids(runtime)
        record = self._runs.get(run_id) if run_id else None
        if record is None:
            logger.debug(f"{hook}: no active run for run id {run_id!r}, skipping")
        return record

    def _emit(self, event: BaseEvent) -> None:
        with emission_guard(f"emit {event.type} event"):
            self.transport.emit(event)

    # -------------------------------------------------------------------------
    # State shaping
    # -------------------------------------------------------------------------

    def _snapshot(self, state: Any) -> Any:
        if self.options.state_mapper is not None:
            snapshot = self.options.state_mapper(state)
        elif self.options.strip_messages_from_state and isinstance(state, dict):
            snapshot = {key: value for key, value in state.items() if key != "messages"}
        else:
            snapshot = state
        return sanitize_for_transport(to_jsonable(snapshot))

    def _error_fields(self, error: Any) -> dict[str, str | None]:
        if isinstance(error, str):
            message = error
        else:
            message = field(error, "message") or str(error)

        stack = None
        if isinstance(error, BaseException):
            stack = "".join(traceback.format_exception(error))
        elif not isinstance(error, str):
            stack = field(error, "stack")

        match self.options.error_detail_level:
            case "full":
                return {"message": message, "code": AGENT_ERROR_CODE, "stack": stack}
            case "message":
                return {"message": message}
            case "code":
                return {"code": AGENT_ERROR_CODE}
            case _:
                return {}

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    async def before_agent(self, state: Any, runtime: Any) -> dict[str, Any]:
        """Emit RUN_STARTED and the initial state/messages snapshots.

        Raises:
            ConfigurationError: If no run id can be resolved
        """
        thread_id, run_id = self.resolve_ids(runtime)
        if not run_id:
            raise ConfigurationError(
                "No run id for this run: set configurable.run_id, context.run_id "
                "or the run_id_override option"
            )

        record = RunRecord(run_id=run_id, thread_id=thread_id)
        self._runs[run_id] = record
        logger.debug(f"Run {run_id} started (thread {thread_id})")

        with emission_guard("emit RUN_STARTED event"):
            run_input = sanitize_for_transport(to_jsonable(state))
            self.transport.emit(
                RunStartedEvent(
                    thread_id=thread_id,
                    run_id=run_id,
                    input=run_input,
                    timestamp=now_ms(),
                )
            )

        if self.options.snapshots_initial:
            with emission_guard("emit initial STATE_SNAPSHOT event"):
                snapshot = self._snapshot(state)
                record.initial_snapshot = snapshot
                self.transport.emit(StateSnapshotEvent(snapshot=snapshot, timestamp=now_ms()))

            messages = field(state, "messages")
            if messages:
                with emission_guard("emit MESSAGES_SNAPSHOT event"):
                    mapped = map_messages(messages, run_id, self.options.message_mapper)
                    self.transport.emit(
                        MessagesSnapshotEvent(messages=mapped, timestamp=now_ms())
                    )

        return {}

    async def before_model(self, state: Any, runtime: Any) -> dict[str, Any]:
        """Emit STEP_STARTED (and an activity snapshot) for a model turn."""
        record = self._record(runtime, "before_model")
        if record is None:
            return {}

        turn = record.turn
        record.turn += 1
        record.message_id = deterministic_id(record.run_id, turn)
        record.step_name = runtime_attr(runtime, "step_name") or f"model_call_{turn}"

        self._emit(StepStartedEvent(step_name=record.step_name, timestamp=now_ms()))

        if self.options.emit_activities:
            with emission_guard("emit ACTIVITY_SNAPSHOT event"):
                record.activity_id = deterministic_id(f"{record.run_id}:activity", turn)
                content = {
                    "status": "started",
                    "stepName": record.step_name,
                    "modelName": runtime_attr(runtime, "model_name"),
                    "inputPreview": _input_preview(state),
                    "timestamp": now_ms(),
                }
                content = {key: value for key, value in content.items() if value is not None}
                if self.options.activity_mapper is not None:
                    content = self.options.activity_mapper(content)
                self.transport.emit(
                    ActivitySnapshotEvent(
                        message_id=record.activity_id,
                        activity_type=AGENT_STEP_ACTIVITY,
                        content=content,
                        replace=True,
                        timestamp=now_ms(),
                    )
                )

        return {}

    async def after_model(self, state: Any, runtime: Any) -> dict[str, Any]:
        """Emit STEP_FINISHED (and an activity delta) for the finished turn."""
        record = self._record(runtime, "after_model")
        if record is None:
            return {}

        step_name = record.step_name or f"model_call_{max(record.turn - 1, 0)}"
        self._emit(StepFinishedEvent(step_name=step_name, timestamp=now_ms()))

        if self.options.emit_activities and record.activity_id:
            with emission_guard("emit ACTIVITY_DELTA event"):
                patch = [
                    {"op": "replace", "path": "/status", "value": "completed"},
                    {"op": "add", "path": "/outputType", "value": _output_type(state)},
                ]
                self.transport.emit(
                    ActivityDeltaEvent(
                        message_id=record.activity_id,
                        activity_type=AGENT_STEP_ACTIVITY,
                        patch=patch,
                        timestamp=now_ms(),
                    )
                )

        record.step_name = None
        record.activity_id = None
        return {}

    async def after_agent(self, state: Any, runtime: Any) -> dict[str, Any]:
        """Emit final snapshots and RUN_FINISHED or RUN_ERROR."""
        record = self._record(runtime, "after_agent")
        if record is None:
            return {}

        try:
            if self.options.snapshots_final:
                with emission_guard("emit final state events"):
                    snapshot = self._snapshot(state)
                    self.transport.emit(StateSnapshotEvent(snapshot=snapshot, timestamp=now_ms()))
                    if (
                        self.options.emit_state_snapshots == "all"
                        and record.initial_snapshot is not None
                    ):
                        delta = compute_state_delta(record.initial_snapshot, snapshot)
                        if delta:
                            self.transport.emit(StateDeltaEvent(delta=delta, timestamp=now_ms()))

            error = field(state, "error")
            if error:
                with emission_guard("emit RUN_ERROR event"):
                    self.transport.emit(
                        RunErrorEvent(**self._error_fields(error), timestamp=now_ms())
                    )
            else:
                with emission_guard("emit RUN_FINISHED event"):
                    result = None
                    if self.options.result_mapper is not None:
                        result = to_jsonable(self.options.result_mapper(state))
                    self.transport.emit(
                        RunFinishedEvent(
                            thread_id=record.thread_id,
                            run_id=record.run_id,
                            result=result,
                            timestamp=now_ms(),
                        )
                    )
        finally:
            self._runs.pop(record.run_id, None)
            if self.on_run_end is not None:
                try:
                    self.on_run_end(record.run_id)
                except Exception as e:
                    logger.warning(f"Run end callback failed for run {record.run_id}: {e}")
            logger.debug(f"Run {record.run_id} finished")

        return {}
