"""Tests for HistoryStore on top of SQLiteSession."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_runtime.core.history_store import HistoryStore


class FakeClient:
    def __init__(self, history: list[dict[str, str]] | None = None):
        self.history = list(history or [])

    def get_history(self) -> list[dict[str, str]]:
        return list(self.history)

    def set_history(self, items: list[dict[str, str]]) -> None:
        self.history = list(items)


class TestHistoryStore:
    @pytest.mark.asyncio
    async def test_save_and_restore_round_trip(self, tmp_path: Path) -> None:
        store = HistoryStore(tmp_path / "db" / "history.db")
        items = [{"role": "user", "content": "hello"}, {"role": "assistant", "content": "hi"}]

        await store.save("s1", FakeClient(items))
        restored = FakeClient()
        await store.restore("s1", restored)

        assert restored.history == items
        store.close()

    @pytest.mark.asyncio
    async def test_save_replaces_previous_history(self, tmp_path: Path) -> None:
        store = HistoryStore(tmp_path / "history.db")

        await store.save("s1", FakeClient([{"role": "user", "content": "one"}]))
        await store.save("s1", FakeClient([{"role": "user", "content": "two"}]))
        restored = FakeClient()
        await store.restore("s1", restored)

        assert restored.history == [{"role": "user", "content": "two"}]
        store.close()

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, tmp_path: Path) -> None:
        store = HistoryStore(tmp_path / "history.db")
        await store.save("s1", FakeClient([{"role": "user", "content": "mine"}]))

        other = FakeClient([{"role": "user", "content": "stale"}])
        await store.restore("s2", other)

        assert other.history == []
        store.close()

    @pytest.mark.asyncio
    async def test_delete_clears_history(self) -> None:
        store = HistoryStore()
        await store.save("s1", FakeClient([{"role": "user", "content": "x"}]))

        await store.delete("s1")
        restored = FakeClient()
        await store.restore("s1", restored)

        assert restored.history == []
        store.close()
