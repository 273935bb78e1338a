"""
Tools contributed by external MCP servers.

A ``DiscoveredMCPTool`` forwards calls to the connection that discovered it.
Unless the server is trusted, the first call asks for confirmation; "always"
answers are remembered on the connection's allowlist per server or per tool.
"""

from __future__ import annotations

import time

from typing import Any, Protocol

from agent_runtime.core.errors import get_error_message
from agent_runtime.models.error_models import ToolErrorType
from agent_runtime.models.tool_models import MCPConfirmationDetails, ToolConfirmationOutcome, ToolResult
from agent_runtime.tools.base import BaseTool, ToolCallContext, await_confirmation
from agent_runtime.utils.logger import logger
from agent_runtime.utils.metrics import mcp_tool_calls_total


class MCPToolCaller(Protocol):
    """What a discovered tool needs from its connection."""

    name: str
    trust: bool
    allowlist: set[str]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any: ...


def result_to_text(result: Any) -> tuple[str, bool]:
    """Flatten an MCP ``tools/call`` result into text and its error flag.

    Accepts SDK result objects and plain ``MCPResult`` models; non-text parts
    are summarized by type.
    """
    is_error = bool(getattr(result, "isError", False))
    content = getattr(result, "content", result)
    if isinstance(content, str):
        return content, is_error

    parts: list[str] = []
    for part in content or []:
        if isinstance(part, dict):
            text, part_type = part.get("text"), part.get("type")
        else:
            text, part_type = getattr(part, "text", None), getattr(part, "type", None)
        if text is not None:
            parts.append(str(text))
        elif part_type:
            parts.append(f"[{part_type} content]")
    return "\n".join(parts), is_error


class DiscoveredMCPTool(BaseTool):
    def __init__(
        self,
        caller: MCPToolCaller,
        server_tool_name: str,
        description: str | None,
        parameter_schema: dict[str, Any] | None,
    ):
        super().__init__(
            name=server_tool_name,
            display_name=f"{server_tool_name} ({caller.name} MCP Server)",
            description=description or "",
            parameter_schema=parameter_schema or {"type": "object", "properties": {}},
        )
        self.caller = caller
        self.server_name = caller.name
        self.server_tool_name = server_tool_name

    @property
    def tool_allowlist_key(self) -> str:
        return f"{self.server_name}.{self.server_tool_name}"

    def needs_confirmation(self) -> bool:
        if self.caller.trust:
            return False
        allowlist = self.caller.allowlist
        return self.server_name not in allowlist and self.tool_allowlist_key not in allowlist

    def confirmation_details(self) -> MCPConfirmationDetails:
        async def on_confirm(outcome: ToolConfirmationOutcome) -> None:
            if outcome is ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER:
                self.caller.allowlist.add(self.server_name)
            elif outcome is ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL:
                self.caller.allowlist.add(self.tool_allowlist_key)

        return MCPConfirmationDetails(
            title="Confirm MCP Tool Execution",
            server_name=self.server_name,
            tool_name=self.server_tool_name,
            tool_display_name=self.name,
            on_confirm=on_confirm,
        )

    async def run(self, params: dict[str, Any], context: ToolCallContext) -> ToolResult:
        if self.needs_confirmation():
            outcome = await await_confirmation(self.confirmation_details(), context)
            if outcome is ToolConfirmationOutcome.CANCEL:
                return ToolResult.failure(
                    f"User declined to run {self.name}.",
                    ToolErrorType.EXECUTION_CANCELLED,
                    display=f"{self.display_name} cancelled",
                )

        started = time.monotonic()
        try:
            result = await self.caller.call_tool(self.server_tool_name, params)
        except Exception as e:
            mcp_tool_calls_total.labels(tool_name=self.name, status="error").inc()
            message = get_error_message(e)
            logger.warning(f"MCP tool {self.name} failed: {message}")
            return ToolResult.failure(
                f"MCP tool '{self.server_tool_name}' on server '{self.server_name}' failed: {message}",
                ToolErrorType.MCP_TOOL_ERROR,
            )

        text, is_error = result_to_text(result)
        mcp_tool_calls_total.labels(tool_name=self.name, status="error" if is_error else "success").inc()
        logger.log_tool_execution(
            self.name,
            success=not is_error,
            duration_ms=(time.monotonic() - started) * 1000,
            output=text,
        )
        if is_error:
            return ToolResult.failure(text or "MCP tool reported an error", ToolErrorType.MCP_TOOL_ERROR)
        return ToolResult(llm_content=text, return_display=text)
