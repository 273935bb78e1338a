"""
Chat turns over pooled session clients.

Each turn resolves the session's client through the pool (so the idle timer
restarts), streams the model output under a hard timeout and persists the
history once the turn succeeds.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import Callable

from agent_runtime.core.client_pool import SessionClientPool
from agent_runtime.core.constants import STREAM_TIMEOUT_SECONDS
from agent_runtime.core.model_client import DeltaCallback
from agent_runtime.utils.cancellation import CancellationToken
from agent_runtime.utils.logger import logger, session_context

ErrorCallback = Callable[[str], None]

STREAM_TIMEOUT_MESSAGE = "Stream timeout"


class ChatService:
    """Runs streamed chat turns for sessions held by a ``SessionClientPool``."""

    def __init__(self, pool: SessionClientPool, stream_timeout: float = STREAM_TIMEOUT_SECONDS):
        self.pool = pool
        self.stream_timeout = stream_timeout

    async def stream_message(
        self,
        session_id: str,
        message: str,
        on_delta: DeltaCallback | None = None,
        on_error: ErrorCallback | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> str | None:
        """Send ``message`` in ``session_id`` and stream the reply.

        Args:
            session_id: Conversation to continue (created on first use)
            message: User message text
            on_delta: Receives text deltas as they arrive
            on_error: Receives a short error description on timeout or failure
            cancellation_token: Interrupts the turn when cancelled

        Returns:
            The final reply, or None when the turn timed out or failed.

        Raises:
            asyncio.CancelledError: If the token interrupted the turn
        """
        with session_context(session_id):
            client = await self.pool.get_or_create(session_id)
            scope = cancellation_token.cancellation_scope() if cancellation_token else contextlib.nullcontext()
            try:
                async with scope, asyncio.timeout(self.stream_timeout):
                    reply = await client.send_message(message, on_delta)
            except TimeoutError:
                logger.error(f"Stream for session {session_id} exceeded {self.stream_timeout:.0f}s")
                _notify(on_error, STREAM_TIMEOUT_MESSAGE)
                return None
            except asyncio.CancelledError:
                logger.info(f"Chat turn cancelled for session {session_id}")
                raise
            except Exception as e:
                logger.error(f"Chat turn failed for session {session_id}: {e}", exc_info=True)
                _notify(on_error, str(e))
                return None

            await self.pool.save(session_id)
            return reply


def _notify(on_error: ErrorCallback | None, message: str) -> None:
    if on_error is None:
        return
    try:
        on_error(message)
    except Exception as e:
        logger.warning(f"Error callback failed: {e}")
