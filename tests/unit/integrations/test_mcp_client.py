"""Tests for ToolServerConnection lifecycle."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import pytest

from agent_runtime.core.errors import ToolServerConnectError, ToolServerDiscoveryError
from agent_runtime.integrations.mcp_client import ToolServerConnection
from agent_runtime.models.mcp_models import MCPServerConfig, MCPTool, ServerStatus
from agent_runtime.tools.mcp_tool import DiscoveredMCPTool
from agent_runtime.tools.registry import ToolRegistry


def fake_transport(tool_names: list[str]) -> Mock:
    client = Mock()
    client.list_tools = AsyncMock(return_value=[MCPTool(name=name) for name in tool_names])
    transport = Mock()
    transport.connect = AsyncMock(return_value=client)
    transport.disconnect = AsyncMock()
    return transport


class TestToolServerConnection:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self) -> None:
        registry = ToolRegistry()
        config = MCPServerConfig(command="srv", exclude_tools=["internal"])
        connection = ToolServerConnection("srv", config, registry)
        transport = fake_transport(["search", "internal"])

        with patch("agent_runtime.integrations.mcp_client.create_transport", return_value=transport):
            await connection.connect()
        assert connection.status is ServerStatus.CONNECTING

        names = await connection.discover()

        assert names == ["search"]
        assert connection.status is ServerStatus.REGISTERED
        assert isinstance(registry.get_tool("search"), DiscoveredMCPTool)

        await connection.disconnect()

        assert connection.status is ServerStatus.DISCONNECTED
        assert len(registry) == 0
        transport.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_name_conflict_registers_qualified_name(self) -> None:
        registry = ToolRegistry()
        first = ToolServerConnection("one", MCPServerConfig(command="one"), registry)
        second = ToolServerConnection("two", MCPServerConfig(command="two"), registry)

        with patch(
            "agent_runtime.integrations.mcp_client.create_transport",
            side_effect=[fake_transport(["search"]), fake_transport(["search"])],
        ):
            await first.connect()
            await second.connect()
        await first.discover()
        names = await second.discover()

        assert names == ["two__search"]
        assert sorted(registry.get_tool_names()) == ["search", "two__search"]

    @pytest.mark.asyncio
    async def test_connect_failure_marks_failed(self) -> None:
        transport = Mock()
        transport.connect = AsyncMock(side_effect=OSError("spawn failed"))
        connection = ToolServerConnection("srv", MCPServerConfig(command="srv"), ToolRegistry())

        with (
            patch("agent_runtime.integrations.mcp_client.create_transport", return_value=transport),
            pytest.raises(ToolServerConnectError, match="spawn failed"),
        ):
            await connection.connect()

        assert connection.status is ServerStatus.FAILED

    @pytest.mark.asyncio
    async def test_filtered_to_nothing_fails_discovery(self) -> None:
        config = MCPServerConfig(command="srv", include_tools=["missing"])
        connection = ToolServerConnection("srv", config, ToolRegistry())

        with patch("agent_runtime.integrations.mcp_client.create_transport", return_value=fake_transport(["a"])):
            await connection.connect()

        with pytest.raises(ToolServerDiscoveryError, match="No tools found on the server."):
            await connection.discover()
        assert connection.status is ServerStatus.FAILED
