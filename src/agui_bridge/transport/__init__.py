"""Transport layer for delivering protocol events to clients."""

from .base import CancellationToken, QueuedTransport, Sink, Transport
from .binary import (
    BINARY_MEDIA_TYPE,
    BinaryTransport,
    FrameDecoder,
    decode_frame,
    encode_frame,
    iter_frames,
)
from .sse import SSE_MEDIA_TYPE, SSETransport, encode_sse, parse_sse
from .validating import ValidatingTransport

__all__ = [
    "BINARY_MEDIA_TYPE",
    "SSE_MEDIA_TYPE",
    "BinaryTransport",
    "CancellationToken",
    "FrameDecoder",
    "QueuedTransport",
    "SSETransport",
    "Sink",
    "Transport",
    "ValidatingTransport",
    "decode_frame",
    "encode_frame",
    "encode_sse",
    "iter_frames",
    "parse_sse",
]
