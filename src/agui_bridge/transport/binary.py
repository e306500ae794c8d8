"""Length-prefixed binary transport.

Wire format, repeated per event::

    +------------------+------------------------------+
    | length (u32, BE) | payload (``length`` bytes)   |
    +------------------+------------------------------+

The payload is the event's wire dict encoded with orjson. Clients select
this transport by sending ``Accept: application/vnd.agui-bridge.frames``.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator

import orjson
from pydantic import ValidationError

from ..errors import FrameDecodeError
from ..events import BaseEvent, parse_event
from .base import QueuedTransport

BINARY_MEDIA_TYPE = "application/vnd.agui-bridge.frames"

_LENGTH = struct.Struct(">I")
HEADER_SIZE = _LENGTH.size
MAX_FRAME_SIZE = 0xFFFFFFFF


def encode_frame(event: BaseEvent) -> bytes:
    """Encode an event with its 4-byte big-endian length prefix."""
    payload = orjson.dumps(event.to_wire())
    if len(payload) > MAX_FRAME_SIZE:
        raise FrameDecodeError(f"Event payload too large for one frame: {len(payload)} bytes")
    return _LENGTH.pack(len(payload)) + payload


def _decode_payload(payload: bytes) -> BaseEvent:
    try:
        return parse_event(orjson.loads(payload))
    except (orjson.JSONDecodeError, ValidationError) as e:
        raise FrameDecodeError(f"Invalid frame payload: {e}") from e


def decode_frame(data: bytes) -> BaseEvent:
    """Decode exactly one framed event.

    Raises:
        FrameDecodeError: If the prefix or payload is incomplete or invalid
    """
    if len(data) < HEADER_SIZE:
        raise FrameDecodeError("Invalid frame: insufficient data for length prefix")
    (length,) = _LENGTH.unpack_from(data)
    if len(data) < HEADER_SIZE + length:
        raise FrameDecodeError("Invalid frame: insufficient data for payload")
    return _decode_payload(data[HEADER_SIZE : HEADER_SIZE + length])


class FrameDecoder:
    """Incremental decoder for a stream of frames arriving in arbitrary pieces."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[BaseEvent]:
        """Add received bytes and return every event now complete."""
        self._buffer.extend(data)
        return list(self._drain())

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def _drain(self) -> Iterator[BaseEvent]:
        while len(self._buffer) >= HEADER_SIZE:
            (length,) = _LENGTH.unpack_from(self._buffer)
            end = HEADER_SIZE + length
            if len(self._buffer) < end:
                return
            payload = bytes(self._buffer[HEADER_SIZE:end])
            del self._buffer[:end]
            yield _decode_payload(payload)


def iter_frames(data: bytes) -> Iterator[BaseEvent]:
    """Decode a complete byte string holding zero or more frames.

    Raises:
        FrameDecodeError: If trailing bytes do not form a whole frame
    """
    decoder = FrameDecoder()
    yield from decoder.feed(data)
    if decoder.buffered:
        raise FrameDecodeError(f"Truncated frame: {decoder.buffered} trailing bytes")


class BinaryTransport(QueuedTransport):
    """Transport writing length-prefixed frames to the sink."""

    media_type = BINARY_MEDIA_TYPE

    def serialize(self, event: BaseEvent) -> bytes:
        return encode_frame(event)
