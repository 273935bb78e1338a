"""
Session Client Pool - one independent model client per conversation session.

Clients are created on first access, restored from persisted history and
released after ``client_idle_timeout`` seconds without access. Every release
path (manual, idle, clear) saves the client's history first; a failed save
is logged and never prevents the removal.

Idle timers do not reference the pool: an expiring entry posts
``(session_id, generation)`` to the pool's eviction queue and a pool-owned
worker task performs the release. An entry accessed after its timer fired
has a newer generation, so stale expiries are ignored.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import Awaitable, Callable
from typing import Any

from agent_runtime.core.constants import (
    CLIENT_IDLE_TIMEOUT_SECONDS,
    EVENT_CLIENT_CREATED,
    EVENT_CLIENT_RELEASED,
    EVENT_CLIENT_RESTORED,
)
from agent_runtime.core.model_client import ModelClient
from agent_runtime.integrations.events import EventNotifier, publish
from agent_runtime.models.event_models import ClientLifecycleEvent
from agent_runtime.utils.logger import logger
from agent_runtime.utils.metrics import pool_clients_active, pool_clients_released_total, pool_save_failures_total

ClientFactory = Callable[[str], ModelClient]
SessionCallback = Callable[[str, ModelClient], Awaitable[None]]
IdleCallback = Callable[[tuple[str, int]], None]


class SessionClientEntry:
    """A pooled client with its idle timer."""

    __slots__ = ("_on_idle_timeout", "_on_save", "_timer", "client", "generation", "idle_timeout", "session_id")

    def __init__(
        self,
        session_id: str,
        client: ModelClient,
        on_save: SessionCallback,
        on_idle_timeout: IdleCallback,
        idle_timeout: float = CLIENT_IDLE_TIMEOUT_SECONDS,
    ):
        self.session_id = session_id
        self.client = client
        self.idle_timeout = idle_timeout
        self.generation = 0
        self._on_save = on_save
        self._on_idle_timeout = on_idle_timeout
        self._timer: asyncio.TimerHandle | None = None
        self.reset_idle_timer()

    def reset_idle_timer(self) -> None:
        """Re-arm the idle timer for a full window from now."""
        if self._timer is not None:
            self._timer.cancel()
        self.generation += 1
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.idle_timeout, self._on_idle_timeout, (self.session_id, self.generation))

    async def save(self) -> None:
        await self._on_save(self.session_id, self.client)

    def cleanup(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class SessionClientPool:
    """Maps session ids to live model clients."""

    def __init__(
        self,
        client_factory: ClientFactory,
        on_save: SessionCallback,
        on_restore: SessionCallback,
        *,
        idle_timeout: float = CLIENT_IDLE_TIMEOUT_SECONDS,
        notifier: EventNotifier | None = None,
    ):
        self._client_factory = client_factory
        self._on_save = on_save
        self._on_restore = on_restore
        self.idle_timeout = idle_timeout
        self._notifier = notifier
        self._entries: dict[str, SessionClientEntry] = {}
        self._creating: dict[str, asyncio.Future[ModelClient]] = {}
        self._saving: dict[str, asyncio.Task[bool]] = {}
        self._evictions: asyncio.Queue[tuple[str, int]] = asyncio.Queue()
        self._eviction_worker: asyncio.Task[None] | None = None

    # ============================================
    # ACCESS
    # ============================================

    async def get_or_create(self, session_id: str) -> ModelClient:
        """Return the session's client, creating and restoring one if needed.

        Concurrent calls for the same session share a single creation.
        """
        entry = self._entries.get(session_id)
        if entry is not None:
            entry.reset_idle_timer()
            return entry.client

        self._ensure_eviction_worker()
        creation = self._creating.get(session_id)
        if creation is None:
            creation = asyncio.ensure_future(self._create(session_id))
            self._creating[session_id] = creation
            creation.add_done_callback(lambda done, sid=session_id: self._creation_finished(sid, done))
            return await asyncio.shield(creation)

        client = await asyncio.shield(creation)
        if (entry := self._entries.get(session_id)) is not None:
            entry.reset_idle_timer()
        return client

    def get(self, session_id: str) -> ModelClient | None:
        """Existing client or None; resets the idle timer when found."""
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        entry.reset_idle_timer()
        return entry.client

    def has(self, session_id: str) -> bool:
        return session_id in self._entries

    def get_active_sessions(self) -> list[str]:
        return list(self._entries)

    def get_stats(self) -> dict[str, Any]:
        return {
            "totalClients": len(self._entries),
            "activeSessions": self.get_active_sessions(),
        }

    async def refresh_tools(self) -> None:
        """Rebind every pooled client to the current tool set without touching idle timers."""
        entries = list(self._entries.values())
        results = await asyncio.gather(*(entry.client.update_tools() for entry in entries), return_exceptions=True)
        for entry, result in zip(entries, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(f"Failed to refresh tools for session {entry.session_id}: {result}")

    async def _create(self, session_id: str) -> ModelClient:
        # A release of the same session may still be writing its history
        if (pending_save := self._saving.get(session_id)) is not None:
            await asyncio.shield(pending_save)

        logger.info(f"Creating new client for session: {session_id}")
        client = self._client_factory(session_id)
        await client.initialize()
        await client.update_tools()
        publish(self._notifier, EVENT_CLIENT_CREATED, ClientLifecycleEvent(type="client_created", session_id=session_id))

        logger.info(f"Restoring session history for session: {session_id}")
        await self._on_restore(session_id, client)
        publish(
            self._notifier, EVENT_CLIENT_RESTORED, ClientLifecycleEvent(type="client_restored", session_id=session_id)
        )

        self._entries[session_id] = SessionClientEntry(
            session_id,
            client,
            self._on_save,
            self._evictions.put_nowait,
            self.idle_timeout,
        )
        pool_clients_active.set(len(self._entries))
        logger.info(f"Client created for session {session_id}. Pool size: {len(self._entries)}")
        return client

    def _creation_finished(self, session_id: str, creation: asyncio.Future[ModelClient]) -> None:
        if self._creating.get(session_id) is creation:
            del self._creating[session_id]
        if not creation.cancelled() and (error := creation.exception()) is not None:
            logger.error(f"Failed to create client for session {session_id}: {error}")

    # ============================================
    # SAVE / RELEASE
    # ============================================

    async def save(self, session_id: str) -> None:
        """Persist the session's history now; no-op for unknown sessions."""
        entry = self._entries.get(session_id)
        if entry is not None:
            await entry.save()

    async def _save_quietly(self, entry: SessionClientEntry) -> bool:
        try:
            await entry.save()
            return True
        except Exception as e:
            pool_save_failures_total.inc()
            logger.error(f"Failed to save session {entry.session_id} before release: {e}", exc_info=True)
            return False

    async def release(self, session_id: str, reason: str = "manual") -> None:
        """Save (best effort), stop the timer and drop the session. Idempotent."""
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return

        logger.info(f"Releasing client for session: {session_id} ({reason})")
        entry.cleanup()
        pool_clients_active.set(len(self._entries))
        pool_clients_released_total.labels(reason=reason).inc()

        saving = asyncio.ensure_future(self._save_quietly(entry))
        self._saving[session_id] = saving
        try:
            await asyncio.shield(saving)
        finally:
            if self._saving.get(session_id) is saving:
                del self._saving[session_id]

        publish(
            self._notifier,
            EVENT_CLIENT_RELEASED,
            ClientLifecycleEvent(type="client_released", session_id=session_id, reason=reason),
        )
        logger.info(f"Pool size after release: {len(self._entries)}")

    async def clear(self) -> None:
        """Save every session (all outcomes awaited), then empty the pool."""
        entries = list(self._entries.values())
        logger.info(f"Clearing pool with {len(entries)} clients")

        results = await asyncio.gather(*(entry.save() for entry in entries), return_exceptions=True)
        for entry, result in zip(entries, results, strict=True):
            if isinstance(result, Exception):
                pool_save_failures_total.inc()
                logger.error(f"Failed to save session {entry.session_id} during clear: {result}")

        for entry in entries:
            entry.cleanup()
            if self._entries.get(entry.session_id) is entry:
                del self._entries[entry.session_id]
        pool_clients_active.set(len(self._entries))
        pool_clients_released_total.labels(reason="clear").inc(len(entries))

    async def shutdown(self) -> None:
        """Clear the pool and stop the eviction worker."""
        await self.clear()
        worker, self._eviction_worker = self._eviction_worker, None
        if worker is not None:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    # ============================================
    # IDLE EVICTION
    # ============================================

    def _ensure_eviction_worker(self) -> None:
        if self._eviction_worker is None or self._eviction_worker.done():
            self._eviction_worker = asyncio.create_task(self._evict_idle_clients())

    async def _evict_idle_clients(self) -> None:
        while True:
            session_id, generation = await self._evictions.get()
            entry = self._entries.get(session_id)
            if entry is None or entry.generation != generation:
                continue
            logger.info(f"Client for session {session_id} idle for {self.idle_timeout:.0f}s, releasing")
            try:
                await self.release(session_id, reason="idle")
            except Exception as e:
                logger.error(f"Idle release failed for session {session_id}: {e}", exc_info=True)
