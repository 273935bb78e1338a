"""
Persisted session histories.

Backed by the agents SDK ``SQLiteSession`` (one table shared by all
sessions, keyed by session id). ``save`` and ``restore`` have the signature
the session pool expects for its callbacks.
"""

from __future__ import annotations

from pathlib import Path

from agents import SQLiteSession

from agent_runtime.core.model_client import ModelClient
from agent_runtime.utils.logger import logger


class HistoryStore:
    """Saves and restores model-client histories by session id."""

    def __init__(self, db_path: str | Path = ":memory:"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._sessions: dict[str, SQLiteSession] = {}

    def _session(self, session_id: str) -> SQLiteSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = SQLiteSession(session_id, self.db_path)
            self._sessions[session_id] = session
        return session

    async def save(self, session_id: str, client: ModelClient) -> None:
        """Replace the stored history with the client's current history."""
        items = client.get_history()
        session = self._session(session_id)
        await session.clear_session()
        if items:
            await session.add_items(items)
        logger.debug(f"Saved {len(items)} history items for session {session_id}")

    async def restore(self, session_id: str, client: ModelClient) -> None:
        """Load the stored history into a freshly initialized client."""
        items = await self._session(session_id).get_items()
        client.set_history(list(items))
        logger.debug(f"Restored {len(items)} history items for session {session_id}")

    async def delete(self, session_id: str) -> None:
        await self._session(session_id).clear_session()

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
