"""Server-Sent Events (SSE) transport.

Each event is written as one SSE record: ``data: <JSON>\\n\\n``. The JSON
object always has a ``type`` discriminator plus the variant's camelCase
fields.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..events import BaseEvent, parse_event
from .base import QueuedTransport

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def encode_sse(event: BaseEvent) -> str:
    """Serialize an event as one SSE ``data:`` record."""
    return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


def parse_sse(text: str) -> list[BaseEvent]:
    """Parse a block of SSE records back into events.

    Lines that are not ``data:`` records (comments, blank lines) are skipped.
    """
    events: list[BaseEvent] = []
    for line in text.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[6:]  # Strip "data: " prefix
        try:
            payload: dict[str, Any] = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse SSE data: {data}")
            continue
        events.append(parse_event(payload))
    return events


class SSETransport(QueuedTransport):
    """Transport writing SSE text records to the sink."""

    media_type = SSE_MEDIA_TYPE

    def serialize(self, event: BaseEvent) -> str:
        return encode_sse(event)
