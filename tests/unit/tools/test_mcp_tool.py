"""Tests for tools backed by external MCP servers."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from agent_runtime.models.error_models import ToolErrorType
from agent_runtime.models.mcp_models import MCPResult
from agent_runtime.models.tool_models import MCPConfirmationDetails, ToolConfirmationOutcome
from agent_runtime.tools.base import ToolCallContext
from agent_runtime.tools.mcp_tool import DiscoveredMCPTool, result_to_text


class FakeCaller:
    def __init__(self, *, trust: bool = False, result: Any = None, error: Exception | None = None):
        self.name = "files"
        self.trust = trust
        self.allowlist: set[str] = set()
        self.call_tool = AsyncMock(return_value=result, side_effect=error)


def make_tool(caller: FakeCaller) -> DiscoveredMCPTool:
    return DiscoveredMCPTool(caller, "read_file", "Read a file", {"type": "object"})


class TestResultToText:
    def test_text_parts_joined(self) -> None:
        result = MCPResult(content=[{"type": "text", "text": "a"}, {"type": "text", "text": "b"}])

        assert result_to_text(result) == ("a\nb", False)

    def test_sdk_objects_and_non_text_parts(self) -> None:
        result = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="hello"), SimpleNamespace(type="image", text=None)],
            isError=True,
        )

        assert result_to_text(result) == ("hello\n[image content]", True)

    def test_plain_string_content(self) -> None:
        assert result_to_text(MCPResult(content="done")) == ("done", False)


class TestDiscoveredMCPTool:
    def test_identity(self) -> None:
        tool = make_tool(FakeCaller())

        assert tool.server_name == "files"
        assert tool.server_tool_name == "read_file"
        assert tool.display_name == "read_file (files MCP Server)"
        assert tool.tool_allowlist_key == "files.read_file"

    @pytest.mark.asyncio
    async def test_trusted_server_skips_confirmation(self) -> None:
        caller = FakeCaller(trust=True, result=MCPResult(content=[{"type": "text", "text": "contents"}]))
        confirm = AsyncMock()

        result = await make_tool(caller).run({"path": "a.txt"}, ToolCallContext(confirm=confirm))

        assert result.success
        assert result.llm_content == "contents"
        confirm.assert_not_awaited()
        caller.call_tool.assert_awaited_once_with("read_file", {"path": "a.txt"})

    @pytest.mark.asyncio
    async def test_declined_call_not_forwarded(self) -> None:
        caller = FakeCaller(result=MCPResult(content="x"))
        confirm = AsyncMock(return_value=ToolConfirmationOutcome.CANCEL)

        result = await make_tool(caller).run({}, ToolCallContext(confirm=confirm))

        assert result.error is not None
        assert result.error.type is ToolErrorType.EXECUTION_CANCELLED
        caller.call_tool.assert_not_awaited()
        assert isinstance(confirm.await_args.args[0], MCPConfirmationDetails)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("outcome", "entry"),
        [
            (ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER, "files"),
            (ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL, "files.read_file"),
        ],
    )
    async def test_always_outcomes_recorded(self, outcome: ToolConfirmationOutcome, entry: str) -> None:
        caller = FakeCaller(result=MCPResult(content="x"))
        confirm = AsyncMock(return_value=outcome)
        tool = make_tool(caller)

        await tool.run({}, ToolCallContext(confirm=confirm))
        await tool.run({}, ToolCallContext(confirm=confirm))

        assert caller.allowlist == {entry}
        assert confirm.await_count == 1
        assert caller.call_tool.await_count == 2

    @pytest.mark.asyncio
    async def test_server_error_result(self) -> None:
        caller = FakeCaller(trust=True, result=MCPResult(content="no such file", isError=True))

        result = await make_tool(caller).run({}, ToolCallContext())

        assert result.error is not None
        assert result.error.type is ToolErrorType.MCP_TOOL_ERROR
        assert result.llm_content == "no such file"

    @pytest.mark.asyncio
    async def test_transport_exception_contained(self) -> None:
        caller = FakeCaller(trust=True, error=ConnectionError("socket closed"))

        result = await make_tool(caller).run({}, ToolCallContext())

        assert result.error is not None
        assert result.error.type is ToolErrorType.MCP_TOOL_ERROR
        assert "socket closed" in result.llm_content
