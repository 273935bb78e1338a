"""
Tool invocation models: results, confirmation prompts and outcomes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from agent_runtime.models.error_models import ToolError, ToolErrorType


class ToolConfirmationOutcome(str, Enum):
    """Answer given by the user to a confirmation prompt."""

    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    PROCEED_ALWAYS_SERVER = "proceed_always_server"
    PROCEED_ALWAYS_TOOL = "proceed_always_tool"
    MODIFY_WITH_EDITOR = "modify_with_editor"
    CANCEL = "cancel"


ConfirmCallback = Callable[[ToolConfirmationOutcome], Awaitable[None]]


@dataclass
class ExecConfirmationDetails:
    """Prompt shown before a generated script runs.

    ``on_confirm`` must be awaited with the user's outcome; it records
    "approve always" decisions on the tool's allowlist.
    """

    title: str
    command: str
    root_command: str
    on_confirm: ConfirmCallback
    show_python_code: bool = False
    python_code: str | None = None
    type: Literal["exec"] = "exec"


@dataclass
class MCPConfirmationDetails:
    """Prompt shown before a tool on an untrusted external server runs."""

    title: str
    server_name: str
    tool_name: str
    tool_display_name: str
    on_confirm: ConfirmCallback
    type: Literal["mcp"] = "mcp"


ConfirmationDetails = ExecConfirmationDetails | MCPConfirmationDetails


@dataclass
class ToolResult:
    """Outcome of one tool invocation.

    ``llm_content`` is what the model sees, ``return_display`` what the user
    sees. ``error`` is set on failure.
    """

    llm_content: str
    return_display: str
    error: ToolError | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, message: str, error_type: ToolErrorType, display: str | None = None) -> ToolResult:
        return cls(
            llm_content=message,
            return_display=display if display is not None else message,
            error=ToolError(message=message, type=error_type),
        )
