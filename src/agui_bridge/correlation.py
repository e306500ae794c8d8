"""Identifier correlation store.

Maps engine-assigned invocation ids (ephemeral, not run-scoped) to protocol
ids (message ids, tool call ids). Each callback handler owns exactly one
store. Entries inserted when an invocation starts must be removed when it
ends or fails; ``dispose()`` clears everything before the handler is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class CorrelationTable(Generic[V]):
    """A named keyed table. No validation beyond the key being a string."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: dict[str, V] = {}

    def set(self, key: str, value: V) -> None:
        self._entries[key] = value

    def get(self, key: str | None) -> V | None:
        if key is None:
            return None
        return self._entries.get(key)

    def delete(self, key: str | None) -> None:
        if key is not None:
            self._entries.pop(key, None)

    def pop(self, key: str | None) -> V | None:
        if key is None:
            return None
        return self._entries.pop(key, None)

    def items(self) -> list[tuple[str, V]]:
        """Snapshot of the entries, safe to iterate while mutating."""
        return list(self._entries.items())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"CorrelationTable({self.name!r}, size={len(self._entries)})"


class CorrelationStore:
    """All correlation tables owned by one callback handler.

    Primary tables:
        message_ids: invocation id -> message id
        tool_call_ids: tool invocation id -> tool call id
        parent_to_authoritative: parent invocation id -> authoritative run id

    Auxiliary tables:
        agent_run_ids: invocation id -> authoritative run id
        latest_message_ids: authoritative run id -> latest message id
        turn_counters: authoritative run id -> next model turn index
        thinking_ids: invocation id -> reasoning message id
        tool_call_names: tool call id -> tool name
        accumulated_args: tool call id -> streamed argument text
        pending_tool_calls: authoritative run id -> tool call ids seen
        tool_chunk_ids: "invocation:index" -> tool call id
    """

    def __init__(self) -> None:
        self.message_ids: CorrelationTable[str] = CorrelationTable("message_ids")
        self.tool_call_ids: CorrelationTable[str] = CorrelationTable("tool_call_ids")
        self.parent_to_authoritative: CorrelationTable[str] = CorrelationTable(
            "parent_to_authoritative"
        )
        self.agent_run_ids: CorrelationTable[str] = CorrelationTable("agent_run_ids")
        self.latest_message_ids: CorrelationTable[str] = CorrelationTable("latest_message_ids")
        self.turn_counters: CorrelationTable[int] = CorrelationTable("turn_counters")
        self.thinking_ids: CorrelationTable[str] = CorrelationTable("thinking_ids")
        self.tool_call_names: CorrelationTable[str] = CorrelationTable("tool_call_names")
        self.accumulated_args: CorrelationTable[str] = CorrelationTable("accumulated_args")
        self.pending_tool_calls: CorrelationTable[list[str]] = CorrelationTable(
            "pending_tool_calls"
        )
        self.tool_chunk_ids: CorrelationTable[str] = CorrelationTable("tool_chunk_ids")

    def tables(self) -> list[CorrelationTable[Any]]:
        """Every table owned by this store."""
        return [value for value in vars(self).values() if isinstance(value, CorrelationTable)]

    def is_empty(self) -> bool:
        """Check that no table holds an entry."""
        return all(len(table) == 0 for table in self.tables())

    def sizes(self) -> dict[str, int]:
        """Entry count per table (for leak diagnostics)."""
        return {table.name: len(table) for table in self.tables()}

    def dispose(self) -> None:
        """Clear every table. Safe to call repeatedly."""
        for table in self.tables():
            table.clear()

    @contextmanager
    def tracked(self, table: CorrelationTable[V], key: str, value: V) -> Iterator[V]:
        """Insert an entry for the duration of a block.

        The entry is removed on every exit path, including exceptions and
        cancellation.

        Usage:
            with store.tracked(store.message_ids, invocation_id, message_id):
                await stream_tokens()
        """
        table.set(key, value)
        try:
            yield value
        finally:
            table.delete(key)
            logger.debug(f"Released {table.name}[{key}]")
