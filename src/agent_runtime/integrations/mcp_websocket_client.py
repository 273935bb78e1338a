"""WebSocket MCP client for tool servers reachable over ws:// or wss://.

Speaks JSON-RPC 2.0 over a single websocket and multiplexes concurrent
requests through a background listener that resolves one future per id.
Exposes the same ``list_tools``/``call_tool`` surface as the stdio client.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging

from typing import Any

import websockets

from websockets.asyncio.client import ClientConnection

from agent_runtime.core.constants import (
    MCP_CALL_TOOL_TIMEOUT,
    MCP_CLIENT_NAME,
    MCP_CLIENT_VERSION,
    MCP_CONNECT_TIMEOUT,
    MCP_LIST_TOOLS_TIMEOUT,
    MCP_PROTOCOL_VERSION,
)
from agent_runtime.core.errors import ToolServerError
from agent_runtime.models.mcp_models import MCPResult, MCPTool

logger = logging.getLogger(__name__)


class WebSocketMCPClient:
    """Minimal MCP client over a websocket."""

    def __init__(
        self,
        ws_url: str,
        server_name: str,
        *,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
        list_tools_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
        call_tool_timeout: float = MCP_CALL_TOOL_TIMEOUT,
    ):
        self.ws_url = ws_url
        self.server_name = server_name
        self.name = server_name
        self.connect_timeout = connect_timeout
        self.list_tools_timeout = list_tools_timeout
        self.call_tool_timeout = call_tool_timeout
        self._ws: ClientConnection | None = None
        self._msg_id = 0
        self._initialized = False

        self._pending_requests: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._listen_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()

    async def __aenter__(self) -> WebSocketMCPClient:
        """Connect and run the MCP ``initialize`` handshake."""
        try:
            self._ws = await websockets.connect(self.ws_url, open_timeout=self.connect_timeout)
            logger.info(f"{self.server_name}: WebSocket connected")

            self._listen_task = asyncio.create_task(self._listen_loop())

            await self._send_request(
                "initialize",
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": MCP_CLIENT_NAME, "version": MCP_CLIENT_VERSION},
                },
                timeout=self.connect_timeout,
            )
            await self._ws.send(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}))

            self._initialized = True
            logger.info(f"{self.server_name}: Initialized successfully")
            return self

        except Exception as e:
            logger.error(f"{self.server_name}: Connection failed: {e}")
            await self._cleanup()
            raise

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self._cleanup()

    async def _cleanup(self) -> None:
        """Stop the listener, fail pending requests and close the socket."""
        self._initialized = False

        if self._listen_task:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None

        for future in self._pending_requests.values():
            if not future.done():
                future.cancel()
        self._pending_requests.clear()

        if self._ws:
            await self._ws.close()
            self._ws = None
            logger.info(f"{self.server_name}: WebSocket closed")

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()

    async def _listen_loop(self) -> None:
        """Receive messages and resolve the matching pending request."""
        if not self._ws:
            return

        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"{self.server_name}: Received invalid JSON")
                    continue

                msg_id = data.get("id")
                if msg_id is None:
                    logger.debug(f"{self.server_name}: Received notification: {data.get('method')}")
                    continue

                future = self._pending_requests.pop(msg_id, None)
                if future is None:
                    # Server-initiated request; this client does not serve any
                    logger.debug(f"{self.server_name}: Ignoring message with unknown id {msg_id}")
                elif not future.done():
                    if "error" in data:
                        future.set_exception(ToolServerError(self.server_name, f"MCP error: {data['error']}"))
                    else:
                        future.set_result(data)

            self._fail_pending(ToolServerError(self.server_name, "Connection closed"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.server_name}: Listen loop error: {e}")
            self._fail_pending(ToolServerError(self.server_name, f"Connection lost: {e}"))

    def _next_id(self) -> int:
        self._msg_id += 1
        return self._msg_id

    async def _send_request(self, method: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Send a JSON-RPC request and wait for its response."""
        if not self._ws:
            raise ToolServerError(self.server_name, "WebSocket not connected")

        async with self._write_lock:
            msg_id = self._next_id()
            future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
            self._pending_requests[msg_id] = future
            await self._ws.send(json.dumps({"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params}))

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise ToolServerError(self.server_name, f"Request {method} timed out after {timeout}s") from None
        finally:
            self._pending_requests.pop(msg_id, None)

    async def list_tools(self, *args: Any, **kwargs: Any) -> list[MCPTool]:
        if not self._initialized:
            raise ToolServerError(self.server_name, "Client not initialized")

        response = await self._send_request("tools/list", {}, timeout=self.list_tools_timeout)
        tools_data = response.get("result", {}).get("tools", [])
        return [MCPTool(**t) for t in tools_data]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any] | None, *args: Any, **kwargs: Any) -> MCPResult:
        if not self._initialized:
            raise ToolServerError(self.server_name, "Client not initialized")

        response = await self._send_request(
            "tools/call",
            {"name": tool_name, "arguments": arguments or {}},
            timeout=self.call_tool_timeout,
        )
        return MCPResult(**response.get("result", {}))
