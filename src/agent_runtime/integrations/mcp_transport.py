"""
MCP Transport Abstraction Layer.

Two transports share one interface:
- stdio: a locally launched server process (agents SDK ``MCPServerStdio``)
- websocket: a server reachable at a ws:// or wss:// URL

Both return a client exposing ``list_tools()`` and ``call_tool(name, args)``.
"""

from __future__ import annotations

import os

from abc import ABC, abstractmethod
from typing import Any

from agents.mcp import MCPServerStdio

from agent_runtime.core.constants import (
    MCP_CALL_TOOL_TIMEOUT,
    MCP_CONNECT_TIMEOUT,
    MCP_LIST_TOOLS_TIMEOUT,
    MCP_SERVER_TIMEOUT_SECONDS,
)
from agent_runtime.core.errors import ToolServerConnectError
from agent_runtime.integrations.mcp_websocket_client import WebSocketMCPClient
from agent_runtime.models.mcp_models import MCPServerConfig
from agent_runtime.utils.logger import logger


class MCPTransport(ABC):
    """Abstract base for MCP server transports."""

    def __init__(self, server_name: str):
        self.server_name = server_name

    @abstractmethod
    async def connect(self) -> Any:
        """Connect to the server and return the client instance."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect and release the transport. Safe to call when not connected."""


class StdioTransport(MCPTransport):
    """Launches the server as a child process and talks MCP over its stdio."""

    def __init__(self, server_name: str, config: MCPServerConfig, timeout: float = MCP_SERVER_TIMEOUT_SECONDS):
        super().__init__(server_name)
        self.config = config
        self.timeout = config.timeout or timeout
        self._server: MCPServerStdio | None = None

    def _params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"command": self.config.command, "args": list(self.config.args)}
        if self.config.env:
            params["env"] = {**os.environ, **self.config.env}
        if self.config.cwd:
            params["cwd"] = self.config.cwd
        return params

    async def connect(self) -> Any:
        server = MCPServerStdio(
            params=self._params(),
            name=self.server_name,
            client_session_timeout_seconds=self.timeout,
        )
        self._server = server
        try:
            await server.__aenter__()  # type: ignore[no-untyped-call]
        except Exception as e:
            self._server = None
            raise ToolServerConnectError(self.server_name, f"failed to start '{self.config.command}': {e}") from e

        logger.info(f"{self.server_name} connected via stdio (timeout: {self.timeout}s)")
        return server

    async def disconnect(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            await server.__aexit__(None, None, None)
            logger.info(f"{self.server_name} stdio server stopped")


class WebSocketTransport(MCPTransport):
    """Connects to a running server over a websocket."""

    def __init__(
        self,
        server_name: str,
        ws_url: str,
        *,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
        list_tools_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
        call_tool_timeout: float = MCP_CALL_TOOL_TIMEOUT,
    ):
        super().__init__(server_name)
        self.ws_url = ws_url
        self._timeouts = {
            "connect_timeout": connect_timeout,
            "list_tools_timeout": list_tools_timeout,
            "call_tool_timeout": call_tool_timeout,
        }
        self._client: WebSocketMCPClient | None = None

    async def connect(self) -> Any:
        client = WebSocketMCPClient(self.ws_url, self.server_name, **self._timeouts)
        self._client = client
        try:
            await client.__aenter__()
        except Exception as e:
            self._client = None
            raise ToolServerConnectError(self.server_name, f"cannot connect to {self.ws_url}: {e}") from e

        logger.info(f"{self.server_name} connected via WebSocket ({self.ws_url})")
        return client

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.__aexit__(None, None, None)
            logger.info(f"{self.server_name} WebSocket disconnected")


def create_transport(
    server_name: str,
    config: MCPServerConfig,
    *,
    connect_timeout: float = MCP_CONNECT_TIMEOUT,
    list_tools_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
    call_tool_timeout: float = MCP_CALL_TOOL_TIMEOUT,
) -> MCPTransport:
    """Pick the transport for ``config``: ``url`` means websocket, ``command`` means stdio.

    Raises:
        ValueError: If the URL scheme is not ws:// or wss://
    """
    if config.url:
        if not config.url.startswith(("ws://", "wss://")):
            raise ValueError(f"Unsupported MCP server URL for '{server_name}': {config.url}")
        timeout = config.timeout
        return WebSocketTransport(
            server_name,
            config.url,
            connect_timeout=connect_timeout,
            list_tools_timeout=timeout or list_tools_timeout,
            call_tool_timeout=timeout or call_tool_timeout,
        )
    return StdioTransport(server_name, config)
