"""
Tool Registry - name-indexed collection of every tool the model may call.

Built-in tools are registered at startup; tools from external servers are
added during discovery and removed again when their server disconnects.
"""

from __future__ import annotations

from typing import Any

from agent_runtime.core.constants import MCP_TOOL_NAME_SEPARATOR
from agent_runtime.core.errors import ToolNotFoundError
from agent_runtime.tools.base import BaseTool
from agent_runtime.utils.logger import logger


class ToolRegistry:
    """Registers and looks up tools by name."""

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register_tool(self, tool: BaseTool) -> str:
        """Register ``tool`` and return the name it was registered under.

        A server-backed tool whose name is already taken is registered as
        ``{server}__{tool}`` instead. Any other duplicate replaces the
        existing entry.
        """
        name = tool.name
        if name in self._tools:
            if tool.server_name:
                name = f"{tool.server_name}{MCP_TOOL_NAME_SEPARATOR}{tool.name}"
                tool.name = name
                logger.debug(f"Tool name conflict, registering as {name}")
            else:
                logger.warning(f"Tool with name '{name}' is already registered. Overwriting.")
        self._tools[name] = tool
        return name

    def get_tool(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def require_tool(self, name: str) -> BaseTool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_all_tools(self) -> list[BaseTool]:
        return list(self._tools.values())

    def get_tool_names(self) -> list[str]:
        return list(self._tools)

    def get_tools_by_server(self, server_name: str) -> list[BaseTool]:
        return [tool for tool in self._tools.values() if tool.server_name == server_name]

    def remove_tools_by_server(self, server_name: str) -> int:
        """Remove every tool contributed by ``server_name``; returns the count removed."""
        names = [name for name, tool in self._tools.items() if tool.server_name == server_name]
        for name in names:
            del self._tools[name]
        if names:
            logger.debug(f"Removed {len(names)} tools from server {server_name}")
        return len(names)

    def get_function_declarations(self) -> list[dict[str, Any]]:
        """Name/description/schema triples for every registered tool."""
        return [
            {"name": tool.name, "description": tool.description, "parameters": tool.parameter_schema}
            for tool in self._tools.values()
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
