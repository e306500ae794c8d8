"""Bridge options.

One options object configures both adapters. Options are validated when the
object is created, so a bad configuration fails at setup time instead of in
the middle of a run.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .emission import DEFAULT_MAX_PAYLOAD_SIZE
from .errors import ConfigurationError

StateSnapshotMode = Literal["none", "initial", "final", "all"]
ErrorDetailLevel = Literal["full", "message", "code", "none"]

ENV_PREFIX = "AGUI_BRIDGE_"

_TRUTHY = ("1", "true", "yes", "on")


class BridgeOptions(BaseModel):
    """Configuration shared by the lifecycle middleware and the callback handler."""

    model_config = ConfigDict(frozen=True)

    # Event control
    emit_tool_results: bool = True
    emit_state_snapshots: StateSnapshotMode = "initial"
    emit_activities: bool = False
    emit_reasoning: bool = True

    # Smart emission policy
    max_ui_payload_size: int = Field(default=DEFAULT_MAX_PAYLOAD_SIZE, gt=0)
    chunk_large_results: bool = False

    # Identifier overrides
    thread_id_override: str | None = None
    run_id_override: str | None = None

    # Error handling
    error_detail_level: ErrorDetailLevel = "message"

    # State shaping
    strip_messages_from_state: bool = True

    # Data mappers
    state_mapper: Callable[[Any], Any] | None = None
    result_mapper: Callable[[Any], Any] | None = None
    activity_mapper: Callable[[dict[str, Any]], dict[str, Any]] | None = None
    message_mapper: Callable[[Any], Any] | None = None

    # Advisory schema validation: False, True (log) or "strict" (raise)
    validate_events: bool | Literal["strict"] = False

    @property
    def snapshots_initial(self) -> bool:
        return self.emit_state_snapshots in ("initial", "all")

    @property
    def snapshots_final(self) -> bool:
        return self.emit_state_snapshots in ("final", "all")

    @classmethod
    def create(cls, **values: Any) -> BridgeOptions:
        """Build options, converting validation failures to ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid bridge options: {e}") from e

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides: Any) -> BridgeOptions:
        """Read scalar options from environment variables.

        ``AGUI_BRIDGE_MAX_UI_PAYLOAD_SIZE=65536`` sets ``max_ui_payload_size``
        and so on. Explicit keyword overrides win over the environment.
        Mapper callables can only be passed as overrides.
        """
        values: dict[str, Any] = {}
        for name, info in cls.model_fields.items():
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is None or name.endswith("_mapper"):
                continue
            if info.annotation is bool:
                values[name] = raw.strip().lower() in _TRUTHY
            elif name == "validate_events":
                lowered = raw.strip().lower()
                values[name] = "strict" if lowered == "strict" else lowered in _TRUTHY
            else:
                values[name] = raw.strip()
        values.update(overrides)
        return cls.create(**values)
