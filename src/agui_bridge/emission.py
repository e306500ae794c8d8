"""Smart emission policy for oversized payloads.

Tool results can be far larger than a UI wants in one event. Results that
fit are emitted unchanged; larger ones are either split into ordered chunks
or truncated with a marker. Sizes are measured in UTF-8 bytes, and every
split lands on a character boundary.

This policy only shapes what the UI sees. The agent always receives the
complete tool output.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from .events import (
    LARGE_RESULT_CHUNK,
    BaseEvent,
    CustomEvent,
    ToolCallResultEvent,
)
from .ids import generate_id, now_ms

logger = logging.getLogger(__name__)

ENCODING = "utf-8"

DEFAULT_MAX_PAYLOAD_SIZE = 50 * 1024

_WHITESPACE = (b" ", b"\n")


def _truncation_marker(elided: int) -> str:
    return f" [Truncated: {elided} bytes]"


def _is_continuation(byte: int) -> bool:
    """UTF-8 continuation bytes look like 0b10xxxxxx."""
    return byte & 0xC0 == 0x80


def _align_to_char(encoded: bytes, start: int, end: int) -> int:
    """Move ``end`` back so encoded[start:end] does not split a character."""
    while end > start and end < len(encoded) and _is_continuation(encoded[end]):
        end -= 1
    if end == start:
        # One character wider than the window: take the whole character
        end = start + 1
        while end < len(encoded) and _is_continuation(encoded[end]):
            end += 1
    return end


class SmartEmissionPolicy:
    """Chunk-or-truncate policy for UI payloads.

    Args:
        max_payload_size: Maximum encoded size of one payload, in bytes
        chunking_enabled: Split oversized content instead of truncating it
    """

    def __init__(
        self,
        max_payload_size: int = DEFAULT_MAX_PAYLOAD_SIZE,
        chunking_enabled: bool = False,
    ):
        if max_payload_size <= 0:
            raise ValueError("max_payload_size must be positive")
        self.max_payload_size = max_payload_size
        self.chunking_enabled = chunking_enabled

    @staticmethod
    def byte_size(content: str) -> int:
        return len(content.encode(ENCODING))

    def fits(self, content: str) -> bool:
        return self.byte_size(content) <= self.max_payload_size

    def iter_chunks(self, content: str) -> Iterator[str]:
        """Lazily split content into pieces of at most ``max_payload_size`` bytes.

        Prefers to cut just after the last space or newline when it falls in
        the second half of the window. Whitespace stays with the earlier
        piece, so joining the pieces reproduces the input exactly.
        """
        encoded = content.encode(ENCODING)
        limit = self.max_payload_size
        start = 0

        while start < len(encoded):
            end = min(start + limit, len(encoded))
            if end < len(encoded):
                end = _align_to_char(encoded, start, end)
                boundary = max(encoded.rfind(ws, start, end) for ws in _WHITESPACE)
                if boundary >= 0 and boundary + 1 - start > (end - start) // 2:
                    end = boundary + 1
            # Strict decode: a piece that splits a character raises here
            yield encoded[start:end].decode(ENCODING)
            start = end

    def truncate(self, content: str) -> str:
        """Cut content to fit the limit and append a truncation marker.

        Content that already fits is returned unchanged. When the limit is
        too small to hold the marker, the content is only cut.
        """
        encoded = content.encode(ENCODING)
        if len(encoded) <= self.max_payload_size:
            return content
        # Reserve room for the largest possible elided count
        reserve = self.byte_size(_truncation_marker(len(encoded)))
        keep = self.max_payload_size - reserve
        marked = keep > 0
        if not marked:
            keep = self.max_payload_size
        while keep > 0 and _is_continuation(encoded[keep]):
            keep -= 1
        kept = encoded[:keep].decode(ENCODING)
        if not marked:
            return kept
        return kept + _truncation_marker(len(encoded) - keep)

    def result_events(
        self,
        content: str,
        tool_call_id: str,
        message_id: str | None = None,
    ) -> Iterator[BaseEvent]:
        """Events carrying a tool result under this policy.

        Args:
            content: Full tool output as text
            tool_call_id: Tool call the result belongs to
            message_id: Id of the tool result message (generated if omitted)

        Yields:
            One TOOL_CALL_RESULT, or one LARGE_RESULT_CHUNK custom event per piece
        """
        result_message_id = message_id or generate_id()

        if self.fits(content):
            yield ToolCallResultEvent(
                message_id=result_message_id,
                tool_call_id=tool_call_id,
                content=content,
                timestamp=now_ms(),
            )
            return

        if self.chunking_enabled:
            logger.debug(
                f"Chunking {self.byte_size(content)} byte result for tool call {tool_call_id}"
            )
            pieces = self.iter_chunks(content)
            current = next(pieces, None)
            index = 0
            while current is not None:
                following = next(pieces, None)
                yield CustomEvent(
                    name=LARGE_RESULT_CHUNK,
                    value={
                        "toolCallId": tool_call_id,
                        "messageId": result_message_id,
                        "chunk": current,
                        "index": index,
                        "final": following is None,
                    },
                    timestamp=now_ms(),
                )
                current = following
                index += 1
            return

        yield ToolCallResultEvent(
            message_id=result_message_id,
            tool_call_id=tool_call_id,
            content=self.truncate(content),
            timestamp=now_ms(),
        )
