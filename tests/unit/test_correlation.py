"""Unit tests for the identifier correlation store."""

from __future__ import annotations

import pytest

from agui_bridge.correlation import CorrelationStore, CorrelationTable


class TestCorrelationTable:
    """Tests for a single keyed table."""

    def test_set_get_delete(self) -> None:
        """Entries can be stored, read and removed."""
        table: CorrelationTable[str] = CorrelationTable("message_ids")
        table.set("inv-1", "msg-1")

        assert table.get("inv-1") == "msg-1"
        assert "inv-1" in table
        assert len(table) == 1

        table.delete("inv-1")
        assert table.get("inv-1") is None
        assert len(table) == 0

    def test_missing_and_none_keys(self) -> None:
        """Lookups of unknown or None keys return None without raising."""
        table: CorrelationTable[str] = CorrelationTable("t")

        assert table.get("nope") is None
        assert table.get(None) is None
        assert table.pop(None) is None
        table.delete(None)
        table.delete("nope")

    def test_pop_removes_entry(self) -> None:
        """pop returns the value and removes it."""
        table: CorrelationTable[int] = CorrelationTable("t")
        table.set("a", 1)

        assert table.pop("a") == 1
        assert "a" not in table

    def test_items_is_a_snapshot(self) -> None:
        """Deleting while iterating items() is safe."""
        table: CorrelationTable[int] = CorrelationTable("t")
        for key in ("a", "b", "c"):
            table.set(key, 1)

        for key, _ in table.items():
            table.delete(key)

        assert len(table) == 0


class TestCorrelationStore:
    """Tests for the store owning all tables."""

    def test_new_store_is_empty(self) -> None:
        """A fresh store has no entries."""
        store = CorrelationStore()
        assert store.is_empty()
        assert set(store.sizes().values()) == {0}

    def test_dispose_clears_every_table(self) -> None:
        """dispose() empties every table and can be repeated."""
        store = CorrelationStore()
        for table in store.tables():
            table.set("key", "value")
        assert not store.is_empty()

        store.dispose()
        assert store.is_empty()

        store.dispose()
        assert store.is_empty()

    def test_tables_cover_all_maps(self) -> None:
        """Every named table is reported by tables()."""
        store = CorrelationStore()
        names = {table.name for table in store.tables()}

        assert {
            "message_ids",
            "tool_call_ids",
            "parent_to_authoritative",
            "agent_run_ids",
            "latest_message_ids",
            "turn_counters",
            "pending_tool_calls",
        } <= names

    def test_tracked_removes_entry_on_exit(self) -> None:
        """tracked() inserts for the block and removes afterwards."""
        store = CorrelationStore()

        with store.tracked(store.message_ids, "inv-1", "msg-1") as value:
            assert value == "msg-1"
            assert store.message_ids.get("inv-1") == "msg-1"

        assert store.message_ids.get("inv-1") is None

    def test_tracked_removes_entry_on_error(self) -> None:
        """tracked() removes the entry even when the block raises."""
        store = CorrelationStore()

        with pytest.raises(RuntimeError):
            with store.tracked(store.tool_call_ids, "inv-1", "call-1"):
                raise RuntimeError("boom")

        assert store.is_empty()
