"""Transport abstraction base classes.

Adapters only ever call ``emit(event)``. Concrete transports serialize the
event and write it to an injected sink (a sync or async callable), so the
same adapters work over SSE, length-prefixed binary frames, or an in-memory
recorder in tests.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from ..events import BaseEvent

logger = logging.getLogger(__name__)

Sink = Callable[[Any], Awaitable[None] | None]
CloseFn = Callable[[], Awaitable[None] | None]


@runtime_checkable
class Transport(Protocol):
    """Protocol for delivering protocol events.

    Implementations may also provide ``connect()``, ``disconnect()`` and an
    ``is_connected`` property; the adapters never require them.
    """

    def emit(self, event: BaseEvent) -> None:
        """Accept an event for delivery. Must not raise."""
        ...


class CancellationToken:
    """Cancellation signal raised when the consuming client goes away.

    Engines wire their own cancellation to it with ``add_callback`` or
    ``link_task`` so a detached client aborts in-flight agent work.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[str | None], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Fire the signal. Only the first call has any effect."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)

    def add_callback(self, callback: Callable[[str | None], Any]) -> None:
        """Register a callback; it runs at once if already cancelled."""
        if self._event.is_set():
            self._run_callback(callback)
        else:
            self._callbacks.append(callback)

    def link_task(self, task: asyncio.Task[Any]) -> None:
        """Cancel ``task`` when this signal fires."""

        def _cancel_task(_reason: str | None) -> None:
            if not task.done():
                task.cancel()

        self.add_callback(_cancel_task)

    async def wait(self) -> str | None:
        """Wait until cancelled and return the reason."""
        await self._event.wait()
        return self._reason

    def _run_callback(self, callback: Callable[[str | None], Any]) -> None:
        try:
            callback(self._reason)
        except Exception as e:
            logger.warning(f"Cancellation callback failed: {e}")


class QueuedTransport(ABC):
    """Queue-backed transport with a single drain loop.

    ``emit`` appends to an append-only queue and makes sure one drain task is
    running. The drain task serializes events in order and writes them to the
    sink, so a slow (awaiting) sink applies backpressure to delivery without
    ever blocking producers.

    A failing write is treated as a disconnect: delivery stops, queued events
    are discarded, the signal fires, and no further write is attempted.
    """

    media_type: str = "application/octet-stream"

    def __init__(
        self,
        sink: Sink,
        *,
        close: CloseFn | None = None,
        signal: CancellationToken | None = None,
    ):
        """Initialize the transport.

        Args:
            sink: Callable receiving each serialized event
            close: Optional callable invoked by ``disconnect()``
            signal: Cancellation token to share (a new one by default)
        """
        self._sink = sink
        self._close = close
        self.signal = signal or CancellationToken()
        self._queue: deque[BaseEvent] = deque()
        self._drain_task: asyncio.Task[None] | None = None
        self._broken = False
        self._closed = False
        self.delivered = 0

    @abstractmethod
    def serialize(self, event: BaseEvent) -> Any:
        """Turn an event into the value written to the sink."""

    @property
    def is_connected(self) -> bool:
        return not (self._closed or self._broken or self.signal.cancelled)

    @property
    def pending(self) -> int:
        """Number of accepted events not yet written."""
        return len(self._queue)

    async def connect(self) -> None:
        """Nothing to establish; the sink is already live."""
        logger.info(f"{self.__class__.__name__} connected")

    def emit(self, event: BaseEvent) -> None:
        """Queue an event for delivery. Never raises."""
        if not self.is_connected:
            logger.debug(f"Dropping {event.type} event: transport not connected")
            return
        self._queue.append(event)
        self._schedule_drain()

    async def flush(self) -> None:
        """Wait until every accepted event has been written (or dropped)."""
        while True:
            task = self._drain_task
            if task is not None and not task.done():
                await task
                continue
            if self._queue and not self._broken:
                self._schedule_drain()
                continue
            return

    async def disconnect(self) -> None:
        """Stop accepting events, deliver what is queued, then close the sink."""
        if self._closed:
            return
        self._closed = True
        await self.flush()
        if self._close is not None:
            try:
                result = self._close()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Error closing {self.__class__.__name__} sink: {e}")
        logger.info(f"{self.__class__.__name__} disconnected")

    def _schedule_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; events stay queued until flush()")
            return
        self._drain_task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._queue and not self._broken:
            event = self._queue.popleft()
            try:
                result = self._sink(self.serialize(event))
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
            except Exception as e:
                logger.warning(
                    f"{self.__class__.__name__} write failed, treating as disconnect: {e}"
                )
                self._mark_broken()
                break

    def _mark_broken(self) -> None:
        self._broken = True
        dropped = len(self._queue)
        self._queue.clear()
        if dropped:
            logger.debug(f"Discarded {dropped} undelivered events")
        self.signal.cancel("write failed")
