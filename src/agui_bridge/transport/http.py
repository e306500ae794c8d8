"""Starlette glue for streaming bridge events over HTTP.

Typical route::

    async def run_agent(request: Request) -> StreamingResponse:
        transport, sink = negotiate_transport(request)
        bridge = AGUIBridge(transport, options)
        task = asyncio.create_task(drive_agent(bridge))
        bridge.bind_task(task)
        return streaming_response(request, transport, sink)

The engine task should call ``await transport.disconnect()`` when the run is
over, which flushes queued events and ends the response stream.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from typing import Any

from starlette.requests import Request
from starlette.responses import StreamingResponse

from .base import CancellationToken, QueuedTransport
from .binary import BINARY_MEDIA_TYPE, BinaryTransport
from .sse import SSE_HEADERS, SSETransport

logger = logging.getLogger(__name__)

_CLOSED = object()


class StreamSink:
    """Async queue sink feeding a streaming response body.

    Pass a ``maxsize`` to bound buffering: writes then wait for the client to
    read, which paces the transport's drain loop without blocking producers.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __call__(self, data: Any) -> None:
        if self._closed:
            raise ConnectionError("Stream closed")
        await self._queue.put(data)

    def close(self) -> None:
        """End the stream once buffered data has been consumed."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[Any]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


def negotiate_transport(
    request: Request,
    *,
    sink: StreamSink | None = None,
    signal: CancellationToken | None = None,
) -> tuple[QueuedTransport, StreamSink]:
    """Pick the binary transport when the client accepts it, SSE otherwise."""
    sink = sink or StreamSink()
    accept = request.headers.get("accept", "")
    transport_cls = BinaryTransport if BINARY_MEDIA_TYPE in accept else SSETransport
    transport = transport_cls(sink, close=sink.close, signal=signal)
    logger.debug(f"Negotiated {transport_cls.__name__} for Accept: {accept!r}")
    return transport, sink


async def _watch_disconnect(
    request: Request,
    signal: CancellationToken,
    sink: StreamSink,
    poll_interval: float,
) -> None:
    while not signal.cancelled and not sink.closed:
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling run")
            signal.cancel("client disconnected")
            sink.close()
            return
        await asyncio.sleep(poll_interval)


def streaming_response(
    request: Request,
    transport: QueuedTransport,
    sink: StreamSink,
    *,
    poll_interval: float = 1.0,
) -> StreamingResponse:
    """Stream everything written to ``sink`` until it is closed.

    A watcher polls for client disconnect and fires the transport's signal,
    so the engine side stops and new emits are dropped.
    """

    async def body() -> AsyncIterator[Any]:
        watcher = asyncio.create_task(
            _watch_disconnect(request, transport.signal, sink, poll_interval)
        )
        try:
            async for chunk in sink:
                yield chunk
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

    return StreamingResponse(body(), media_type=transport.media_type, headers=SSE_HEADERS)
