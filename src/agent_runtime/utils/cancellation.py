"""
Cancellation token for cooperative task cancellation.

One token is shared by everything an invocation waits on: the confirmation
prompt, dependency installs and the script subprocess. Cancelling it unblocks
all of them.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import AsyncIterator, Callable

from agent_runtime.utils.logger import logger


class CancellationToken:
    """Cooperative cancellation token.

    Usage:
        token = CancellationToken()

        # In producer/controller:
        token.cancel("user pressed stop")

        # In consumer/worker:
        if token.is_cancelled:
            return

        # Or inside an awaitable section:
        async with token.cancellation_scope():
            await long_running()
    """

    __slots__ = ("_callbacks", "_cancel_reason", "_cancelled")

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._cancel_reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> str | None:
        """Get the reason for cancellation, if any."""
        return self._cancel_reason

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation and notify all callbacks. Repeated calls are no-ops.

        Args:
            reason: Optional reason for cancellation (for logging/debugging)
        """
        if self._cancelled.is_set():
            return

        self._cancel_reason = reason
        self._cancelled.set()

        for callback in list(self._callbacks):
            self._invoke_callback(callback)

    def _invoke_callback(self, callback: Callable[[], None]) -> None:
        """Invoke a callback, logging any errors."""
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation callback error: {e}")

    async def wait_for_cancellation(self, timeout: float | None = None) -> bool:
        """Wait for cancellation to be requested.

        Args:
            timeout: Maximum time to wait (None = wait forever)

        Returns:
            True if cancelled, False if timeout expired
        """
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to be called when cancelled.

        Runs immediately when the token is already cancelled.

        Returns:
            The callback (for use as decorator and for ``remove_callback``)
        """
        if self._cancelled.is_set():
            self._invoke_callback(callback)
            return callback

        self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Remove a previously registered callback."""
        with contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    @contextlib.asynccontextmanager
    async def cancellation_scope(self) -> AsyncIterator[None]:
        """Context manager that cancels the current task when the token fires.

        Raises:
            asyncio.CancelledError: If the token is cancelled before or during the scope
        """
        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancelled before scope entry")

        current_task = asyncio.current_task()

        def on_cancel() -> None:
            if current_task and not current_task.done():
                current_task.cancel()

        self.on_cancel(on_cancel)
        try:
            yield
        finally:
            self.remove_callback(on_cancel)

        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancelled during scope")

    def check(self) -> None:
        """Raise ``asyncio.CancelledError`` if cancellation was requested."""
        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancellation requested")


__all__ = ["CancellationToken"]
