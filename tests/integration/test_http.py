"""Integration tests for streaming bridge events over HTTP.

Runs a Starlette route that drives a scripted agent through a bridge and
streams the events back, verifying:
- Transport negotiation from the Accept header
- SSE records and Content-Type
- Length-prefixed binary frames
- Disconnect detection and sink shutdown
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import StreamingResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from agui_bridge import AGUIBridge, BridgeOptions
from agui_bridge.events import RunStartedEvent
from agui_bridge.transport import (
    BINARY_MEDIA_TYPE,
    BinaryTransport,
    CancellationToken,
    SSETransport,
    iter_frames,
    parse_sse,
)
from agui_bridge.transport.http import (
    StreamSink,
    _watch_disconnect,
    negotiate_transport,
    streaming_response,
)


def create_app(scripted_run: Any) -> Starlette:
    tasks: set[asyncio.Task[None]] = set()

    async def run_agent(request: Request) -> StreamingResponse:
        body = await request.json()
        run_id = body.get("runId", "run-1")
        transport, sink = negotiate_transport(request)
        bridge = AGUIBridge(transport, BridgeOptions(emit_state_snapshots="none"))

        async def drive() -> None:
            try:
                async with bridge.run_scope(run_id):
                    await scripted_run(bridge, run_id=run_id)
            finally:
                await transport.disconnect()

        task = asyncio.create_task(drive())
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        bridge.bind_task(task)
        return streaming_response(request, transport, sink, poll_interval=0.05)

    return Starlette(routes=[Route("/run", run_agent, methods=["POST"])])


@pytest.fixture
def client(scripted_run: Any) -> TestClient:
    """Test client for an app streaming one scripted run per request."""
    return TestClient(create_app(scripted_run))


# =============================================================================
# Tests: Streaming endpoint
# =============================================================================


class TestSSEStreaming:
    """Test the default SSE stream."""

    def test_content_type(self, client: TestClient):
        """Default responses are SSE."""
        response = client.post("/run", json={"runId": "run-1"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

    def test_records(self, client: TestClient):
        """Every record is a data line carrying one event."""
        response = client.post("/run", json={"runId": "run-1"})

        records = [record for record in response.text.split("\n\n") if record]
        assert all(record.startswith("data: ") for record in records)

        events = parse_sse(response.text)
        assert events[0].type == "RUN_STARTED"
        assert events[0].run_id == "run-1"
        assert events[-1].type == "RUN_FINISHED"
        assert len(events) == len(records)

    def test_tool_result_in_stream(self, client: TestClient):
        """The tool result arrives in camelCase wire form."""
        response = client.post("/run", json={"runId": "run-1"})

        assert '"toolCallId"' in response.text
        results = [event for event in parse_sse(response.text) if event.type == "TOOL_CALL_RESULT"]
        assert results[0].content == "42"


class TestBinaryStreaming:
    """Test the negotiated binary stream."""

    def test_frames(self, client: TestClient):
        """Accepting the frame media type yields length-prefixed frames."""
        response = client.post(
            "/run",
            json={"runId": "run-2"},
            headers={"Accept": BINARY_MEDIA_TYPE},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith(BINARY_MEDIA_TYPE)

        events = list(iter_frames(response.content))
        assert [event.type for event in events][:2] == ["RUN_STARTED", "STEP_STARTED"]
        assert events[-1].type == "RUN_FINISHED"
        assert events[-1].run_id == "run-2"


# =============================================================================
# Tests: Transport negotiation and disconnect
# =============================================================================


def fake_request(accept: str = "", disconnected: bool = False) -> Any:
    request = MagicMock()
    request.headers = {"accept": accept} if accept else {}
    request.is_disconnected = AsyncMock(return_value=disconnected)
    return request


class TestNegotiation:
    """Test picking a transport from the Accept header."""

    def test_defaults_to_sse(self):
        """Without the frame media type the transport is SSE."""
        transport, sink = negotiate_transport(fake_request("text/event-stream"))

        assert isinstance(transport, SSETransport)
        assert isinstance(sink, StreamSink)

    def test_binary_when_accepted(self):
        """The frame media type selects the binary transport."""
        transport, _ = negotiate_transport(fake_request(f"{BINARY_MEDIA_TYPE}, */*"))

        assert isinstance(transport, BinaryTransport)

    def test_shared_signal(self):
        """A provided signal is used by the transport."""
        signal = CancellationToken()
        transport, _ = negotiate_transport(fake_request(), signal=signal)

        assert transport.signal is signal


class TestDisconnect:
    """Test client disconnect handling."""

    @pytest.mark.asyncio
    async def test_watcher_cancels_signal(self):
        """A detected disconnect fires the signal and closes the sink."""
        signal = CancellationToken()
        sink = StreamSink()

        await _watch_disconnect(fake_request(disconnected=True), signal, sink, 0.01)

        assert signal.cancelled
        assert signal.reason == "client disconnected"
        assert sink.closed

    @pytest.mark.asyncio
    async def test_writes_after_close_fail(self):
        """Writing to a closed sink raises, which the transport treats as a disconnect."""
        sink = StreamSink()
        transport = SSETransport(sink, close=sink.close)
        sink.close()

        transport.emit(RunStartedEvent(run_id="r1"))
        await transport.flush()

        assert not transport.is_connected
        assert transport.signal.reason == "write failed"

    @pytest.mark.asyncio
    async def test_sink_iteration_ends_on_close(self):
        """Buffered data is still yielded before the stream ends."""
        sink = StreamSink()
        await sink("a")
        await sink("b")
        sink.close()

        assert [item async for item in sink] == ["a", "b"]
