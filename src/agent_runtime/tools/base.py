"""
Common tool interface.

Every tool the model can call exposes a name, a JSON schema for its
parameters and an async ``run``. Per-call collaborators (cancellation,
confirmation prompt, live output and progress sinks) travel in a
``ToolCallContext``.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from agent_runtime.models.event_models import ToolProgressEvent
from agent_runtime.models.tool_models import (
    ConfirmationDetails,
    ToolConfirmationOutcome,
    ToolResult,
)
from agent_runtime.utils.cancellation import CancellationToken
from agent_runtime.utils.logger import logger

ConfirmationHandler = Callable[[ConfirmationDetails], Awaitable[ToolConfirmationOutcome]]
LiveOutputCallback = Callable[[str], None]
ProgressCallback = Callable[[ToolProgressEvent], None]


@dataclass
class ToolCallContext:
    """Per-invocation collaborators handed to ``BaseTool.run``."""

    call_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)
    confirm: ConfirmationHandler | None = None
    on_output: LiveOutputCallback | None = None
    on_progress: ProgressCallback | None = None

    def write_output(self, text: str) -> None:
        if self.on_output is None or not text:
            return
        try:
            self.on_output(text)
        except Exception as e:
            logger.warning(f"Live output callback error: {e}")

    def report_progress(self, event: ToolProgressEvent) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception as e:
            logger.warning(f"Progress callback error: {e}")


class BaseTool(ABC):
    """A callable capability registered in the ``ToolRegistry``."""

    #: Set for tools contributed by an external tool server
    server_name: str | None = None

    def __init__(self, name: str, display_name: str, description: str, parameter_schema: dict[str, Any]):
        self.name = name
        self.display_name = display_name
        self.description = description
        self.parameter_schema = parameter_schema

    @abstractmethod
    async def run(self, params: dict[str, Any], context: ToolCallContext) -> ToolResult:
        """Execute the tool. Failures are returned as ``ToolResult`` errors, not raised."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


async def await_confirmation(
    details: ConfirmationDetails,
    context: ToolCallContext,
) -> ToolConfirmationOutcome:
    """Ask the caller to confirm, racing the answer against cancellation.

    The chosen outcome is passed to ``details.on_confirm`` so "approve
    always" answers are recorded. No handler, or a cancelled token, yields
    ``CANCEL``.
    """
    if context.confirm is None:
        logger.warning(f"Confirmation required for '{details.title}' but no handler is configured")
        return ToolConfirmationOutcome.CANCEL

    token = context.cancellation_token
    if token.is_cancelled:
        return ToolConfirmationOutcome.CANCEL

    answer = asyncio.ensure_future(context.confirm(details))
    cancelled = asyncio.ensure_future(token.wait_for_cancellation())
    try:
        await asyncio.wait({answer, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (answer, cancelled):
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    if token.is_cancelled or answer.cancelled():
        return ToolConfirmationOutcome.CANCEL

    outcome = answer.result()
    await details.on_confirm(outcome)
    return outcome
