"""Advisory schema validation in front of another transport."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from ..errors import EventValidationError
from ..events import EVENT_ADAPTER, BaseEvent
from .base import Transport

logger = logging.getLogger(__name__)


class ValidatingTransport:
    """Validate every event against the protocol taxonomy before forwarding.

    Events are round-tripped through their wire form, so models built with
    ``model_construct`` or mutated after creation are checked too. Plain
    dicts are accepted and forwarded as parsed models.

    By default an invalid event is logged and still forwarded. With
    ``strict=True`` it raises ``EventValidationError`` instead; use strict
    mode in development and tests only, since it lets emission raise.
    """

    def __init__(
        self,
        inner: Transport,
        *,
        strict: bool = False,
        on_invalid: Callable[[Any, EventValidationError], None] | None = None,
    ):
        self.inner = inner
        self.strict = strict
        self.on_invalid = on_invalid
        self.invalid_count = 0

    def emit(self, event: BaseEvent | dict[str, Any]) -> None:
        wire = event if isinstance(event, dict) else event.to_wire()
        try:
            validated = EVENT_ADAPTER.validate_python(wire)
        except ValidationError as e:
            error = EventValidationError(str(wire.get("type", "UNKNOWN")), str(e))
            self.invalid_count += 1
            if self.strict:
                raise error from e
            if self.on_invalid is not None:
                self.on_invalid(event, error)
            else:
                logger.warning(str(error))
            if isinstance(event, dict):
                logger.debug("Dropping invalid raw dict event; it has no model to forward")
                return
            self.inner.emit(event)
            return
        self.inner.emit(event if isinstance(event, BaseEvent) else validated)

    def __getattr__(self, name: str) -> Any:
        # Expose signal, flush, disconnect, is_connected of the wrapped transport
        return getattr(self.inner, name)
