"""Unit tests for the streaming-callback adapter."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import MagicMock

import pytest

from agui_bridge.callbacks import UNKNOWN_TOOL, AGUICallbackHandler
from agui_bridge.config import BridgeOptions
from agui_bridge.events import LARGE_RESULT_CHUNK
from agui_bridge.ids import deterministic_id


@dataclass
class FakeMessageChunk:
    content: str = ""
    additional_kwargs: dict[str, Any] = field(default_factory=dict)
    tool_call_chunks: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class FakeGenerationChunk:
    message: FakeMessageChunk


@dataclass
class FakeTool:
    name: str


def chunk(**kwargs: Any) -> FakeGenerationChunk:
    return FakeGenerationChunk(message=FakeMessageChunk(**kwargs))


RUN_META = {"run_id": "run-1"}


# =============================================================================
# Model invocations
# =============================================================================


class TestInvocationLifecycle:
    """Tests for TEXT_MESSAGE_* events from model invocations."""

    @pytest.mark.asyncio
    async def test_start_token_end(self, transport: Any) -> None:
        """An invocation streams one assistant message."""
        handler = AGUICallbackHandler(transport)

        await handler.on_invocation_start({}, "llm-1", "chain-1", RUN_META)
        await handler.on_token("Hel", "llm-1")
        await handler.on_token("lo", "llm-1")
        await handler.on_invocation_end({}, "llm-1", "chain-1")

        assert transport.types == [
            "TEXT_MESSAGE_START",
            "TEXT_MESSAGE_CONTENT",
            "TEXT_MESSAGE_CONTENT",
            "TEXT_MESSAGE_END",
        ]
        assert transport.events[0].role == "assistant"
        assert {event.message_id for event in transport.events} == {
            deterministic_id("run-1", 0)
        }

    @pytest.mark.asyncio
    async def test_message_ids_follow_turns(self, transport: Any) -> None:
        """Successive invocations of one run use successive turn ids."""
        handler = AGUICallbackHandler(transport)

        for invocation in ("llm-1", "llm-2"):
            await handler.on_invocation_start({}, invocation, "chain-1", RUN_META)
            await handler.on_invocation_end({}, invocation, "chain-1")

        starts = transport.of_type("TEXT_MESSAGE_START")
        assert [event.message_id for event in starts] == [
            deterministic_id("run-1", 0),
            deterministic_id("run-1", 1),
        ]

    @pytest.mark.asyncio
    async def test_explicit_message_id_metadata(self, transport: Any) -> None:
        """An explicit message id in metadata is used as-is."""
        handler = AGUICallbackHandler(transport)

        await handler.on_invocation_start(
            {}, "llm-1", None, {"run_id": "run-1", "agui_message_id": "given"}
        )

        assert transport.events[0].message_id == "given"

    @pytest.mark.asyncio
    async def test_run_id_falls_back_to_parent(self, transport: Any) -> None:
        """Without metadata the parent invocation id is the run id."""
        handler = AGUICallbackHandler(transport)

        await handler.on_invocation_start({}, "llm-1", "chain-1")

        assert transport.events[0].message_id == deterministic_id("chain-1", 0)

    @pytest.mark.asyncio
    async def test_token_for_unknown_invocation_dropped(self, transport: Any) -> None:
        """Tokens without a started invocation are silently dropped."""
        handler = AGUICallbackHandler(transport)

        await handler.on_token("orphan", "nobody")

        assert transport.events == []

    @pytest.mark.asyncio
    async def test_empty_token_not_emitted(self, transport: Any) -> None:
        """Empty tokens produce no content event."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", None, RUN_META)

        await handler.on_token("", "llm-1")

        assert transport.types == ["TEXT_MESSAGE_START"]

    @pytest.mark.asyncio
    async def test_invocation_error_closes_message(self, transport: Any) -> None:
        """A failed invocation still closes its message."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", None, RUN_META)
        await handler.on_token("partial", "llm-1")

        await handler.on_invocation_error(RuntimeError("rate limited"), "llm-1")

        assert transport.types[-1] == "TEXT_MESSAGE_END"
        assert "RUN_ERROR" not in transport.types
        assert handler.store.message_ids.get("llm-1") is None


class TestReasoning:
    """Tests for reasoning token handling."""

    @pytest.mark.asyncio
    async def test_reasoning_opens_thinking_once(self, transport: Any) -> None:
        """Reasoning tokens open one thinking block, closed at the end."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", None, RUN_META)

        reasoning = chunk(additional_kwargs={"reasoning_content": "thinking..."})
        await handler.on_token("", "llm-1", chunk=reasoning)
        await handler.on_token("", "llm-1", chunk=reasoning)
        await handler.on_token("Answer", "llm-1")
        await handler.on_invocation_end({}, "llm-1")

        assert transport.types == [
            "TEXT_MESSAGE_START",
            "THINKING_START",
            "THINKING_TEXT_MESSAGE_START",
            "THINKING_TEXT_MESSAGE_CONTENT",
            "THINKING_TEXT_MESSAGE_CONTENT",
            "TEXT_MESSAGE_CONTENT",
            "TEXT_MESSAGE_END",
            "THINKING_TEXT_MESSAGE_END",
            "THINKING_END",
        ]

    @pytest.mark.asyncio
    async def test_reasoning_disabled(self, transport: Any) -> None:
        """With emit_reasoning off, reasoning is not forwarded."""
        handler = AGUICallbackHandler(transport, BridgeOptions(emit_reasoning=False))
        await handler.on_invocation_start({}, "llm-1", None, RUN_META)

        await handler.on_token("", "llm-1", chunk=chunk(additional_kwargs={"reasoning": "r"}))

        assert transport.types == ["TEXT_MESSAGE_START"]


# =============================================================================
# Tool calls
# =============================================================================


class TestToolCalls:
    """Tests for TOOL_CALL_* events."""

    @pytest.mark.asyncio
    async def test_streamed_args_flushed_at_tool_start(self, transport: Any) -> None:
        """Streamed fragments are emitted as one TOOL_CALL_ARGS after the start."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", "chain-1", RUN_META)
        await handler.on_token(
            "",
            "llm-1",
            chunk=chunk(
                tool_call_chunks=[{"id": "call-1", "name": "search", "args": '{"q": ', "index": 0}]
            ),
        )
        await handler.on_token(
            "", "llm-1", chunk=chunk(tool_call_chunks=[{"args": '"weather"}', "index": 0}])
        )
        await handler.on_invocation_end({}, "llm-1", "chain-1")

        await handler.on_tool_start(
            FakeTool(name="search"), '{"q": "weather"}', "tool-1", "chain-1", RUN_META
        )

        start = transport.of_type("TOOL_CALL_START")[0]
        args = transport.of_type("TOOL_CALL_ARGS")[0]
        assert start.tool_call_id == "call-1"
        assert start.tool_call_name == "search"
        assert start.parent_message_id == deterministic_id("run-1", 0)
        assert args.tool_call_id == "call-1"
        assert args.delta == '{"q": "weather"}'
        assert transport.types.index("TOOL_CALL_START") < transport.types.index("TOOL_CALL_ARGS")
        assert handler.store.accumulated_args.get("call-1") is None

    @pytest.mark.asyncio
    async def test_tool_calls_from_final_output(self, transport: Any) -> None:
        """Tool calls only present in the final output are still correlated."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", "chain-1", RUN_META)
        output = {
            "tool_calls": [
                {"id": "call-9", "function": {"name": "lookup", "arguments": '{"k": 1}'}}
            ]
        }
        await handler.on_invocation_end(output, "llm-1", "chain-1")

        await handler.on_tool_start({}, "", "tool-1", "chain-1", {"tool_call_id": "call-9"})

        start = transport.of_type("TOOL_CALL_START")[0]
        assert start.tool_call_id == "call-9"
        assert start.tool_call_name == "lookup"
        assert transport.of_type("TOOL_CALL_ARGS")[0].delta == '{"k": 1}'

    @pytest.mark.asyncio
    async def test_tool_id_from_input_payload(self, transport: Any) -> None:
        """The input payload's tool_call_id and name are used when present."""
        handler = AGUICallbackHandler(transport)

        await handler.on_tool_start(
            {}, '{"tool_call_id": "call-2", "name": "calc"}', "tool-1", None
        )

        start = transport.events[0]
        assert start.tool_call_id == "call-2"
        assert start.tool_call_name == "calc"

    @pytest.mark.asyncio
    async def test_tool_name_fallbacks(self, transport: Any) -> None:
        """run_name wins; with nothing known the name is unknown_tool."""
        handler = AGUICallbackHandler(transport)

        await handler.on_tool_start(FakeTool(name="obj"), "x", "tool-1", run_name="explicit")
        await handler.on_tool_start({}, "x", "tool-2")

        names = [event.tool_call_name for event in transport.of_type("TOOL_CALL_START")]
        assert names == ["explicit", UNKNOWN_TOOL]

    @pytest.mark.asyncio
    async def test_tool_id_falls_back_to_invocation(self, transport: Any) -> None:
        """Without any other id the tool invocation id is used."""
        handler = AGUICallbackHandler(transport)

        await handler.on_tool_start({}, "plain input", "tool-7")

        assert transport.events[0].tool_call_id == "tool-7"

    @pytest.mark.asyncio
    async def test_non_string_payload_id_ignored(self, transport: Any) -> None:
        """A domain ``id`` field that is not a string is not a tool call id."""
        handler = AGUICallbackHandler(transport)

        await handler.on_tool_start({"name": "get_order"}, '{"id": 42}', "tool-1", None, RUN_META)
        await handler.on_tool_end("shipped", "tool-1", None, RUN_META)

        assert transport.types == ["TOOL_CALL_START", "TOOL_CALL_END", "TOOL_CALL_RESULT"]
        assert {event.tool_call_id for event in transport.events} == {"tool-1"}

    @pytest.mark.asyncio
    async def test_args_match_only_within_run(self, transport: Any) -> None:
        """Streamed arguments of another run are never claimed."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-b", None, {"run_id": "run-b"})
        fragment = chunk(tool_call_chunks=[{"id": "call-b", "name": "t", "args": '{"x": 1}'}])
        await handler.on_token("", "llm-b", chunk=fragment)
        await handler.on_invocation_end({}, "llm-b")

        await handler.on_tool_start({}, '{"x": 1}', "tool-a", None, {"run_id": "run-a"})

        start = transport.of_type("TOOL_CALL_START")[0]
        assert start.tool_call_id == "tool-a"
        assert transport.of_type("TOOL_CALL_ARGS") == []
        assert handler.store.accumulated_args.get("call-b") == '{"x": 1}'

    @pytest.mark.asyncio
    async def test_started_call_leaves_pending(self, transport: Any) -> None:
        """Starting a tool removes its call from the run's pending list."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", "chain-1", RUN_META)
        fragment = chunk(tool_call_chunks=[{"id": "call-1", "name": "t", "args": "{}"}])
        await handler.on_token("", "llm-1", chunk=fragment)
        await handler.on_invocation_end({}, "llm-1", "chain-1")

        await handler.on_tool_start({}, "{}", "tool-1", "chain-1", RUN_META)

        assert transport.of_type("TOOL_CALL_START")[0].tool_call_id == "call-1"
        assert handler.store.pending_tool_calls.get("run-1") is None

    @pytest.mark.asyncio
    async def test_started_call_not_collected_again(self, transport: Any) -> None:
        """A final output repeating an already started call adds nothing."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", "chain-1", RUN_META)
        meta = {**RUN_META, "tool_call_id": "c9"}
        await handler.on_tool_start({}, "", "tool-1", "chain-1", meta)
        output = {"tool_calls": [{"id": "c9", "name": "lookup", "args": {"k": 1}}]}

        await handler.on_invocation_end(output, "llm-1", "chain-1")

        assert handler.store.pending_tool_calls.get("run-1") is None
        assert handler.store.accumulated_args.get("c9") is None

    @pytest.mark.asyncio
    async def test_tool_end_emits_result(self, transport: Any) -> None:
        """Tool end closes the call and emits its result."""
        handler = AGUICallbackHandler(transport)
        await handler.on_tool_start({}, "", "tool-1", None, {"tool_call_id": "call-1"})

        await handler.on_tool_end("42", "tool-1")

        assert transport.types == ["TOOL_CALL_START", "TOOL_CALL_END", "TOOL_CALL_RESULT"]
        result = transport.events[-1]
        assert result.tool_call_id == "call-1"
        assert result.content == "42"
        assert handler.store.is_empty()

    @pytest.mark.asyncio
    async def test_tool_results_disabled(self, transport: Any) -> None:
        """With emit_tool_results off only the end is emitted."""
        handler = AGUICallbackHandler(transport, BridgeOptions(emit_tool_results=False))
        await handler.on_tool_start({}, "", "tool-1")

        await handler.on_tool_end("42", "tool-1")

        assert transport.types == ["TOOL_CALL_START", "TOOL_CALL_END"]

    @pytest.mark.asyncio
    async def test_large_result_chunked(self, transport: Any) -> None:
        """Oversized results are chunked when enabled."""
        options = BridgeOptions(max_ui_payload_size=10, chunk_large_results=True)
        handler = AGUICallbackHandler(transport, options)
        await handler.on_tool_start({}, "", "tool-1")

        await handler.on_tool_end("x" * 25, "tool-1")

        chunks = transport.of_type("CUSTOM")
        assert [event.name for event in chunks] == [LARGE_RESULT_CHUNK] * 3
        assert chunks[-1].value["final"] is True

    @pytest.mark.asyncio
    async def test_untracked_tool_end_is_noop(self, transport: Any) -> None:
        """An end for an unknown tool invocation emits nothing."""
        handler = AGUICallbackHandler(transport)

        await handler.on_tool_end("result", "never-started")

        assert transport.events == []

    @pytest.mark.asyncio
    async def test_tool_error_closes_call(self, transport: Any) -> None:
        """A failed tool still gets TOOL_CALL_END and no result."""
        handler = AGUICallbackHandler(transport)
        await handler.on_tool_start({}, "", "tool-1", None, {"tool_call_id": "call-1"})

        await handler.on_tool_error(RuntimeError("tool broke"), "tool-1")

        assert transport.types == ["TOOL_CALL_START", "TOOL_CALL_END"]
        assert handler.store.is_empty()

    @pytest.mark.asyncio
    async def test_transport_failure_swallowed(self) -> None:
        """Transport errors never escape a callback."""
        failing = MagicMock()
        failing.emit.side_effect = ConnectionError("gone")
        handler = AGUICallbackHandler(failing)

        await handler.on_invocation_start({}, "llm-1", None, RUN_META)
        await handler.on_token("x", "llm-1")
        await handler.on_invocation_end({}, "llm-1")
        await handler.on_tool_start({}, "", "tool-1")
        await handler.on_tool_end("ok", "tool-1")

        assert failing.emit.call_count >= 4


class TestToolOrdering:
    """Tool events stay ordered per call under interleaving."""

    @pytest.mark.asyncio
    async def test_interleaved_runs_keep_tool_order(self, transport: Any) -> None:
        """START < ARGS < END < RESULT holds for every call in every run."""
        handler = AGUICallbackHandler(transport)
        rng = random.Random(7)
        runs = [f"run-{n}" for n in range(4)]

        scripts = []
        for run in runs:
            meta = {"run_id": run}
            llm, tool, call = f"{run}-llm", f"{run}-tool", f"{run}-call"
            fragment = chunk(tool_call_chunks=[{"id": call, "name": "t", "args": "{}", "index": 0}])
            scripts.append(
                [
                    lambda llm=llm, meta=meta: handler.on_invocation_start({}, llm, None, meta),
                    lambda llm=llm, fragment=fragment: handler.on_token("", llm, chunk=fragment),
                    lambda llm=llm: handler.on_invocation_end({}, llm),
                    lambda tool=tool, meta=meta, call=call: handler.on_tool_start(
                        {}, "{}", tool, None, {**meta, "tool_call_id": call}
                    ),
                    lambda tool=tool: handler.on_tool_end("done", tool),
                ]
            )

        while any(scripts):
            script = rng.choice([s for s in scripts if s])
            await script.pop(0)()

        for run in runs:
            call = f"{run}-call"
            order = [
                event.type
                for event in transport.events
                if getattr(event, "tool_call_id", None) == call
            ]
            assert order == [
                "TOOL_CALL_START",
                "TOOL_CALL_ARGS",
                "TOOL_CALL_END",
                "TOOL_CALL_RESULT",
            ]

    @pytest.mark.asyncio
    async def test_identical_args_across_runs(self, transport: Any) -> None:
        """A tool started without an id claims its own run's call, not an earlier one."""
        handler = AGUICallbackHandler(transport)
        for run in ("run-a", "run-b"):
            llm = f"{run}-llm"
            call = {"id": f"{run}-call", "name": "weather", "args": '{"city": "Paris"}'}
            fragment = chunk(tool_call_chunks=[call])
            await handler.on_invocation_start({}, llm, None, {"run_id": run})
            await handler.on_token("", llm, chunk=fragment)
            await handler.on_invocation_end({}, llm)

        await handler.on_tool_start(
            {"name": "weather"}, '{"city": "Paris"}', "tool-b", None, {"run_id": "run-b"}
        )
        await handler.on_tool_start(
            {"name": "weather"},
            '{"city": "Paris"}',
            "tool-a",
            None,
            {"run_id": "run-a", "tool_call_id": "run-a-call"},
        )

        starts = [event.tool_call_id for event in transport.of_type("TOOL_CALL_START")]
        args = [event.tool_call_id for event in transport.of_type("TOOL_CALL_ARGS")]
        assert starts == ["run-b-call", "run-a-call"]
        assert args == ["run-b-call", "run-a-call"]
        assert handler.store.accumulated_args.get("run-a-call") is None


# =============================================================================
# Convenience emitters and cleanup
# =============================================================================


class TestChunkEmitters:
    """Tests for emit_text_chunk and emit_tool_chunk."""

    def test_emit_text_chunk(self, transport: Any) -> None:
        """A text chunk expands to a full message lifecycle."""
        handler = AGUICallbackHandler(transport)

        handler.emit_text_chunk("m1", "assistant", "Hello")

        assert transport.types == ["TEXT_MESSAGE_START", "TEXT_MESSAGE_CONTENT", "TEXT_MESSAGE_END"]

    def test_emit_tool_chunk(self, transport: Any) -> None:
        """A tool chunk expands to a full tool call lifecycle."""
        handler = AGUICallbackHandler(transport)

        handler.emit_tool_chunk("c1", "search", '{"q": 1}', parent_message_id="m1")

        assert transport.types == ["TOOL_CALL_START", "TOOL_CALL_ARGS", "TOOL_CALL_END"]
        assert transport.events[0].parent_message_id == "m1"


class TestCleanup:
    """Tests for close_open, release_run and dispose."""

    @pytest.mark.asyncio
    async def test_close_open_ends_everything(self, transport: Any) -> None:
        """Open messages, thinking blocks and tool calls are all closed."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", None, RUN_META)
        await handler.on_token("", "llm-1", chunk=chunk(additional_kwargs={"reasoning": "r"}))
        await handler.on_tool_start({}, "", "tool-1", None, {**RUN_META, "tool_call_id": "c1"})
        transport.clear()

        closed = handler.close_open("run-1")

        assert closed == 3
        assert sorted(transport.types) == sorted(
            ["TOOL_CALL_END", "THINKING_TEXT_MESSAGE_END", "THINKING_END", "TEXT_MESSAGE_END"]
        )

    @pytest.mark.asyncio
    async def test_close_open_respects_run(self, transport: Any) -> None:
        """Only the requested run's lifecycles are closed."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-a", None, {"run_id": "a"})
        await handler.on_invocation_start({}, "llm-b", None, {"run_id": "b"})
        transport.clear()

        handler.close_open("a")

        assert transport.types == ["TEXT_MESSAGE_END"]
        assert transport.events[0].message_id == deterministic_id("a", 0)
        assert handler.store.message_ids.get("llm-b") is not None

    @pytest.mark.asyncio
    async def test_release_run_empties_store(self, transport: Any) -> None:
        """After a full run plus release, no correlation state remains."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", "chain-1", RUN_META)
        fragment = chunk(tool_call_chunks=[{"id": "c1", "args": "{}"}])
        await handler.on_token("", "llm-1", chunk=fragment)
        await handler.on_invocation_end({}, "llm-1", "chain-1")

        handler.release_run("run-1")

        assert handler.store.is_empty(), handler.store.sizes()

    @pytest.mark.asyncio
    async def test_dispose_is_repeatable(self, transport: Any) -> None:
        """dispose() clears state and can be called twice."""
        handler = AGUICallbackHandler(transport)
        await handler.on_invocation_start({}, "llm-1", "chain-1", RUN_META)

        handler.dispose()
        handler.dispose()

        assert handler.store.is_empty()
