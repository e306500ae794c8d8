"""Bridge facade wiring both adapters to one transport."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from .callbacks import AGUICallbackHandler
from .config import BridgeOptions
from .middleware import AGUIMiddleware
from .transport.base import CancellationToken, CloseFn, Sink, Transport
from .transport.binary import BinaryTransport
from .transport.sse import SSETransport
from .transport.validating import ValidatingTransport

logger = logging.getLogger(__name__)


class AGUIBridge:
    """One lifecycle middleware and one callback handler sharing a transport.

    Register ``bridge.middleware`` with the engine's middleware stack and
    ``bridge.handler`` with its callbacks. For the two to agree on ids, the
    engine should pass the run id both as ``configurable.run_id`` and in the
    callback metadata (``run_id``).

    Example:
        async with bridge.run_scope(run_id):
            await agent.run(state, config)
    """

    def __init__(self, transport: Transport, options: BridgeOptions | None = None):
        self.options = options or BridgeOptions()
        if self.options.validate_events:
            transport = ValidatingTransport(
                transport, strict=self.options.validate_events == "strict"
            )
        self.transport = transport
        self.handler = AGUICallbackHandler(transport, self.options)
        self.middleware = AGUIMiddleware(
            transport, self.options, on_run_end=self.handler.release_run
        )
        self.signal: CancellationToken = getattr(transport, "signal", None) or CancellationToken()

    @asynccontextmanager
    async def run_scope(self, run_id: str) -> AsyncIterator[AGUIBridge]:
        """Guarantee cleanup of a run's open lifecycles and correlation state.

        On any exit (normal, error or cancellation) every message, thinking
        block and tool call the run left open is closed, and the run's
        entries are released from both adapters.
        """
        try:
            yield self
        finally:
            self.handler.close_open(run_id)
            self.handler.release_run(run_id)
            self.middleware.release_run(run_id)

    def bind_task(self, task: asyncio.Task[Any]) -> None:
        """Cancel ``task`` when the client disconnects."""
        self.signal.link_task(task)

    async def flush(self) -> None:
        """Wait for queued events to be written, if the transport queues."""
        flush = getattr(self.transport, "flush", None)
        if flush is not None:
            await flush()

    def dispose(self) -> None:
        """Clear all correlation state held by the handler."""
        self.handler.dispose()


def create_agui_bridge(
    sink: Sink,
    options: BridgeOptions | None = None,
    *,
    binary: bool = False,
    close: CloseFn | None = None,
    signal: CancellationToken | None = None,
    **option_values: Any,
) -> AGUIBridge:
    """Build a bridge writing to ``sink`` over SSE or binary frames.

    Args:
        sink: Callable receiving each serialized event
        options: Bridge options; built from ``option_values`` when omitted
        binary: Use length-prefixed frames instead of SSE records
        close: Optional callable invoked when the transport disconnects
        signal: Cancellation token to share with the engine

    Raises:
        ConfigurationError: If ``option_values`` are invalid
    """
    if options is None:
        options = BridgeOptions.create(**option_values)
    transport_cls = BinaryTransport if binary else SSETransport
    transport = transport_cls(sink, close=close, signal=signal)
    logger.debug(f"Created bridge over {transport_cls.__name__}")
    return AGUIBridge(transport, options)
