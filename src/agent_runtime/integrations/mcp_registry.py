"""
MCP Server Registry - resolves which external tool servers a discovery pass starts.

Sources:
- ``mcp_servers`` declared in settings (name -> MCPServerConfig)
- ``mcp_server_command``: one shell-quoted command line that becomes a
  server named ``mcp``

Servers contributed by inactive extensions are dropped.
"""

from __future__ import annotations

import shlex

from collections.abc import Mapping

from agent_runtime.core.constants import MCP_COMMAND_SERVER_NAME
from agent_runtime.models.mcp_models import MCPServerConfig
from agent_runtime.utils.logger import logger


def populate_mcp_server_command(
    servers: Mapping[str, MCPServerConfig],
    mcp_server_command: str | None,
) -> dict[str, MCPServerConfig]:
    """Merge the command-line override into the declared servers.

    ``"npx -y 'my server'"`` becomes ``{"mcp": MCPServerConfig(command="npx", args=["-y", "my server"])}``.
    The override replaces a declared server that is also called ``mcp``.
    """
    merged = dict(servers)
    if not mcp_server_command:
        return merged

    command, *args = shlex.split(mcp_server_command)
    merged[MCP_COMMAND_SERVER_NAME] = MCPServerConfig(command=command, args=args)
    return merged


def filter_active_servers(servers: Mapping[str, MCPServerConfig]) -> dict[str, MCPServerConfig]:
    """Drop servers whose contributing extension is inactive, keeping order."""
    active: dict[str, MCPServerConfig] = {}
    for name, config in servers.items():
        if config.is_active:
            active[name] = config
        else:
            extension = config.extension.name if config.extension else "?"
            logger.debug(f"MCP server '{name}' skipped: extension '{extension}' is inactive")
    return active


def resolve_server_configs(
    servers: Mapping[str, MCPServerConfig],
    mcp_server_command: str | None = None,
) -> dict[str, MCPServerConfig]:
    """Servers a discovery pass should start."""
    return filter_active_servers(populate_mcp_server_command(servers, mcp_server_command))


def filter_tool_names(names: list[str], config: MCPServerConfig) -> list[str]:
    """Apply the server's ``include_tools`` / ``exclude_tools`` lists."""
    selected = names
    if config.include_tools is not None:
        allowed = set(config.include_tools)
        selected = [name for name in selected if name in allowed]
    if config.exclude_tools:
        excluded = set(config.exclude_tools)
        selected = [name for name in selected if name not in excluded]
    return selected


__all__ = [
    "filter_active_servers",
    "filter_tool_names",
    "populate_mcp_server_command",
    "resolve_server_configs",
]
