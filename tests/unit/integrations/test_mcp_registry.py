"""Tests for MCP server config resolution."""

from __future__ import annotations

import pytest

from pydantic import ValidationError

from agent_runtime.integrations.mcp_registry import (
    filter_active_servers,
    filter_tool_names,
    populate_mcp_server_command,
    resolve_server_configs,
)
from agent_runtime.models.mcp_models import ExtensionInfo, MCPServerConfig


class TestPopulateMCPServerCommand:
    def test_command_split_with_shell_quoting(self) -> None:
        servers = populate_mcp_server_command({}, "npx -y 'my server' --flag=\"a b\"")

        assert list(servers) == ["mcp"]
        assert servers["mcp"].command == "npx"
        assert servers["mcp"].args == ["-y", "my server", "--flag=a b"]

    def test_no_override_keeps_declared(self) -> None:
        declared = {"fs": MCPServerConfig(command="fs-server")}

        assert populate_mcp_server_command(declared, None) == declared

    def test_override_replaces_declared_mcp_entry(self) -> None:
        declared = {"mcp": MCPServerConfig(command="old"), "fs": MCPServerConfig(command="fs-server")}

        servers = populate_mcp_server_command(declared, "new --x")

        assert servers["mcp"].command == "new"
        assert servers["fs"].command == "fs-server"


class TestExtensionGating:
    def test_inactive_extension_servers_dropped(self) -> None:
        servers = {
            "a": MCPServerConfig(command="a"),
            "b": MCPServerConfig(command="b", extension=ExtensionInfo(name="ext-b", is_active=False)),
            "c": MCPServerConfig(command="c", extension=ExtensionInfo(name="ext-c", is_active=True)),
        }

        assert list(filter_active_servers(servers)) == ["a", "c"]

    def test_resolve_combines_override_and_gating(self) -> None:
        servers = {"b": MCPServerConfig(command="b", extension=ExtensionInfo(name="ext", is_active=False))}

        assert list(resolve_server_configs(servers, "run-mcp")) == ["mcp"]


class TestToolFilters:
    def test_include_then_exclude(self) -> None:
        config = MCPServerConfig(command="x", include_tools=["a", "b", "c"], exclude_tools=["b"])

        assert filter_tool_names(["a", "b", "c", "d"], config) == ["a", "c"]

    def test_no_filters(self) -> None:
        assert filter_tool_names(["a", "b"], MCPServerConfig(command="x")) == ["a", "b"]

    def test_empty_include_selects_nothing(self) -> None:
        assert filter_tool_names(["a"], MCPServerConfig(command="x", include_tools=[])) == []


class TestMCPServerConfig:
    def test_requires_command_or_url(self) -> None:
        with pytest.raises(ValidationError):
            MCPServerConfig()

    def test_url_only_is_valid(self) -> None:
        config = MCPServerConfig(url="ws://localhost:9000")

        assert config.command is None
        assert config.is_active
