"""
Process-wide notification channel.

Managers take an optional ``EventNotifier``; ``None`` means nobody listens.
``EventBus`` is the in-process implementation: publishing is fire-and-forget
and a failing subscriber is logged without affecting the publisher or other
subscribers.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Protocol

from pydantic import BaseModel

from agent_runtime.utils.logger import logger

EventHandler = Callable[[BaseModel], None]


class EventNotifier(Protocol):
    def publish(self, event_type: str, event: BaseModel) -> None: ...

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]: ...


class EventBus:
    """Synchronous fan-out of events to subscribers by type."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler``; returns a function that unsubscribes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event_type: str, event: BaseModel) -> None:
        for handler in list(self._handlers.get(event_type, ())):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Event handler for '{event_type}' failed: {e}")

    def subscriber_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, ()))


def publish(notifier: EventNotifier | None, event_type: str, event: BaseModel) -> None:
    """Publish through ``notifier`` if one is configured."""
    if notifier is not None:
        notifier.publish(event_type, event)
