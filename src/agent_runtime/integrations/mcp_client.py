"""
Connection to one external tool server.

Lifecycle: ``connect()`` opens the transport, ``discover()`` lists the
server's tools and registers them, ``disconnect()`` removes them again and
closes the transport. ``status`` follows
DISCONNECTED -> CONNECTING -> DISCOVERING -> REGISTERED, or FAILED.
"""

from __future__ import annotations

from typing import Any

from agent_runtime.core.constants import (
    MCP_CALL_TOOL_TIMEOUT,
    MCP_CONNECT_TIMEOUT,
    MCP_LIST_TOOLS_TIMEOUT,
)
from agent_runtime.core.errors import ToolServerConnectError, ToolServerDiscoveryError, ToolServerError
from agent_runtime.integrations.mcp_registry import filter_tool_names
from agent_runtime.integrations.mcp_transport import MCPTransport, create_transport
from agent_runtime.models.mcp_models import MCPServerConfig, ServerStatus
from agent_runtime.tools.mcp_tool import DiscoveredMCPTool
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.utils.logger import logger


class ToolServerConnection:
    """Connection to a single MCP server and the tools it contributed."""

    def __init__(
        self,
        name: str,
        config: MCPServerConfig,
        tool_registry: ToolRegistry,
        *,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
        list_tools_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
        call_tool_timeout: float = MCP_CALL_TOOL_TIMEOUT,
    ):
        self.name = name
        self.config = config
        self.tool_registry = tool_registry
        self.trust = config.trust
        self.allowlist: set[str] = set()
        self.status = ServerStatus.DISCONNECTED
        self.registered_tools: list[str] = []
        self._timeouts = {
            "connect_timeout": connect_timeout,
            "list_tools_timeout": list_tools_timeout,
            "call_tool_timeout": call_tool_timeout,
        }
        self._transport: MCPTransport | None = None
        self._client: Any | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Open the transport.

        Raises:
            ToolServerConnectError: If the server cannot be reached or started
        """
        if self._client is not None:
            return
        self.status = ServerStatus.CONNECTING
        try:
            # Tracked before connecting so disconnect() can reap a start cancelled midway
            self._transport = create_transport(self.name, self.config, **self._timeouts)
            self._client = await self._transport.connect()
        except ToolServerConnectError:
            self.status = ServerStatus.FAILED
            raise
        except Exception as e:
            self.status = ServerStatus.FAILED
            raise ToolServerConnectError(self.name, str(e)) from e

    async def discover(self) -> list[str]:
        """List the server's tools and register them.

        Returns:
            Names under which the tools were registered

        Raises:
            ToolServerDiscoveryError: If the server offers no usable tools
        """
        if self._client is None:
            raise ToolServerError(self.name, "not connected")

        self.status = ServerStatus.DISCOVERING
        try:
            server_tools = await self._client.list_tools()
        except Exception as e:
            self.status = ServerStatus.FAILED
            raise ToolServerDiscoveryError(self.name, f"tools/list failed: {e}") from e

        by_name = {tool.name: tool for tool in server_tools}
        selected = filter_tool_names(list(by_name), self.config)
        if not selected:
            self.status = ServerStatus.FAILED
            raise ToolServerDiscoveryError(self.name, "No tools found on the server.")

        self.registered_tools = []
        for tool_name in selected:
            server_tool = by_name[tool_name]
            tool = DiscoveredMCPTool(
                self,
                tool_name,
                getattr(server_tool, "description", None),
                getattr(server_tool, "inputSchema", None),
            )
            self.registered_tools.append(self.tool_registry.register_tool(tool))

        self.status = ServerStatus.REGISTERED
        logger.info(f"MCP server '{self.name}' registered {len(self.registered_tools)} tools")
        return list(self.registered_tools)

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        if self._client is None:
            raise ToolServerError(self.name, "not connected")
        return await self._client.call_tool(tool_name, arguments)

    async def disconnect(self) -> None:
        """Unregister this server's tools and close the transport."""
        self.tool_registry.remove_tools_by_server(self.name)
        self.registered_tools = []
        transport, self._transport = self._transport, None
        self._client = None
        try:
            if transport is not None:
                await transport.disconnect()
        finally:
            self.status = ServerStatus.DISCONNECTED
