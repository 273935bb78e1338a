"""
Tool Server Manager - supervises every configured external MCP server.

A discovery pass tears down the previous connections, then connects to and
enumerates every active server concurrently. One server failing never
affects its siblings: the failure is published on the feedback channel and
the pass still ends in ``DiscoveryState.COMPLETED``.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from collections.abc import Mapping
from typing import Any

from agent_runtime.core.constants import EVENT_MCP_CLIENT_UPDATE, EVENT_USER_FEEDBACK, Settings, get_settings
from agent_runtime.core.errors import DiscoveryNotCompletedError, ToolNotFoundError, get_error_message
from agent_runtime.integrations.events import EventNotifier, publish
from agent_runtime.integrations.mcp_client import ToolServerConnection
from agent_runtime.integrations.mcp_registry import resolve_server_configs
from agent_runtime.models.event_models import MCPClientUpdateEvent, UserFeedbackEvent
from agent_runtime.models.mcp_models import DiscoveryState, MCPServerConfig, ServerStatus
from agent_runtime.tools.mcp_tool import DiscoveredMCPTool
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.utils.logger import logger
from agent_runtime.utils.metrics import mcp_discovery_duration_seconds, mcp_servers_by_status


async def _disconnect_server(name: str, connection: ToolServerConnection) -> None:
    """Disconnect a single server, logging instead of raising."""
    try:
        await connection.disconnect()
    except Exception as e:
        logger.error(f"Error stopping client '{name}': {get_error_message(e)}")


class ToolServerManager:
    """Owns the name -> connection map and the discovery state machine."""

    def __init__(
        self,
        tool_registry: ToolRegistry,
        notifier: EventNotifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.tool_registry = tool_registry
        self._notifier = notifier
        self._settings = settings
        self._connections: dict[str, ToolServerConnection] = {}
        self._discovery_state = DiscoveryState.NOT_STARTED
        self._has_completed_pass = False
        self._discovery_task: asyncio.Task[None] | None = None

    # ============================================
    # DISCOVERY
    # ============================================

    async def discover_all(self, settings: Settings | None = None, background: bool = False) -> None:
        """Run a discovery pass over every configured server.

        Args:
            settings: Configuration to read servers from (defaults to the manager's)
            background: Return right after scheduling the per-server attempts
        """
        settings = settings or self._settings or get_settings()
        if not settings.trusted_folder:
            logger.info("Workspace is not trusted, skipping MCP discovery")
            return

        await self.stop()

        servers = resolve_server_configs(settings.mcp_servers, settings.mcp_server_command)
        self._discovery_state = DiscoveryState.IN_PROGRESS
        self._publish_update()

        task = asyncio.create_task(self._run_discovery(servers, settings))
        self._discovery_task = task
        if background:
            return

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                task.cancel()
                raise
            # A newer discover_all() or stop() cancelled this pass and owns the connections now
            logger.info("MCP discovery pass superseded")

    async def wait_for_discovery(self) -> None:
        """Wait until a background pass, if any, has settled."""
        task = self._discovery_task
        if task is not None and not task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(task)

    async def _run_discovery(self, servers: Mapping[str, MCPServerConfig], settings: Settings) -> None:
        started = time.monotonic()
        cancelled = False
        try:
            await asyncio.gather(*(self._discover_server(name, config, settings) for name, config in servers.items()))
            logger.info(f"MCP tool discovery completed for {len(servers)} servers")
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as e:
            logger.error(f"MCP tool discovery failed: {e}", exc_info=True)
        finally:
            self._discovery_state = DiscoveryState.COMPLETED
            if not cancelled:
                self._has_completed_pass = True
                mcp_discovery_duration_seconds.observe(time.monotonic() - started)
                self._publish_update()

    async def _discover_server(self, name: str, config: MCPServerConfig, settings: Settings) -> None:
        connection = ToolServerConnection(
            name,
            config,
            self.tool_registry,
            connect_timeout=settings.mcp_connect_timeout,
            list_tools_timeout=settings.mcp_list_tools_timeout,
            call_tool_timeout=settings.mcp_call_tool_timeout,
        )
        self._connections[name] = connection
        self._publish_update()
        try:
            await connection.connect()
            await connection.discover()
            self._publish_update()
        except Exception as e:
            self._publish_update()
            message = f"Error during discovery for server '{name}': {get_error_message(e)}"
            logger.warning(message)
            publish(
                self._notifier,
                EVENT_USER_FEEDBACK,
                UserFeedbackEvent(severity="error", message=message, error=repr(e)),
            )

    # ============================================
    # SHUTDOWN
    # ============================================

    async def stop(self) -> None:
        """Disconnect every server concurrently and clear the connection map."""
        task, self._discovery_task = self._discovery_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        connections = list(self._connections.items())
        try:
            if connections:
                await asyncio.gather(*(_disconnect_server(name, conn) for name, conn in connections))
        finally:
            self._connections.clear()
        if connections:
            logger.info(f"Stopped {len(connections)} MCP servers")
            self._publish_update()

    # ============================================
    # QUERIES
    # ============================================

    def get_discovery_state(self) -> DiscoveryState:
        return self._discovery_state

    def get_server_statuses(self) -> dict[str, ServerStatus]:
        return {name: connection.status for name, connection in self._connections.items()}

    def get_connection(self, name: str) -> ToolServerConnection | None:
        return self._connections.get(name)

    def get_stats(self) -> dict[str, Any]:
        statuses = self.get_server_statuses()
        return {
            "discovery_state": self._discovery_state.value,
            "servers": {name: status.value for name, status in statuses.items()},
            "server_count": len(statuses),
            "tool_count": sum(len(c.registered_tools) for c in self._connections.values()),
        }

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Call a registered server-backed tool by its registry name.

        Raises:
            DiscoveryNotCompletedError: If no discovery pass has finished yet
            ToolNotFoundError: If the name is not a live server-backed tool
        """
        if not self._has_completed_pass:
            raise DiscoveryNotCompletedError("MCP tool discovery has not completed")

        tool = self.tool_registry.get_tool(tool_name)
        if not isinstance(tool, DiscoveredMCPTool):
            raise ToolNotFoundError(tool_name)
        connection = self._connections.get(tool.server_name or "")
        if connection is None:
            raise ToolNotFoundError(tool_name)
        return await connection.call_tool(tool.server_tool_name, arguments)

    def _publish_update(self) -> None:
        statuses = self.get_server_statuses()
        for status in ServerStatus:
            mcp_servers_by_status.labels(status=status.value).set(
                sum(1 for value in statuses.values() if value is status)
            )
        publish(
            self._notifier,
            EVENT_MCP_CLIENT_UPDATE,
            MCPClientUpdateEvent(discovery_state=self._discovery_state, servers=statuses),
        )
