"""Runtime bootstrap.

Wires the orchestration layer together: settings, notifier, tool registry,
workspace, built-in tools, history store, session client pool, tool-server
manager and chat service. ``start()`` configures the model provider and
launches tool-server discovery in the background; ``shutdown()`` saves every
session and disconnects every server.
"""

from __future__ import annotations

import asyncio

from typing import Any

from agents import set_default_openai_client, set_tracing_disabled
from pydantic import BaseModel

from agent_runtime.core.chat_service import ChatService
from agent_runtime.core.client_pool import ClientFactory, SessionClientPool
from agent_runtime.core.constants import EVENT_MCP_CLIENT_UPDATE, Settings, get_settings
from agent_runtime.core.history_store import HistoryStore
from agent_runtime.core.model_client import AgentClient
from agent_runtime.integrations.events import EventBus, EventNotifier
from agent_runtime.integrations.mcp_manager import ToolServerManager
from agent_runtime.models.event_models import MCPClientUpdateEvent
from agent_runtime.models.mcp_models import DiscoveryState
from agent_runtime.services.shell_execution import ShellExecutionService
from agent_runtime.tools.base import ConfirmationHandler, ToolCallContext
from agent_runtime.tools.code_interpreter import PythonCodeTool
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.utils.client_factory import create_http_client, create_openai_client
from agent_runtime.utils.logger import logger, setup_logging
from agent_runtime.utils.workspace import WorkspaceContext


class Runtime:
    """Owns every long-lived component of the orchestration layer."""

    def __init__(
        self,
        settings: Settings | None = None,
        notifier: EventNotifier | None = None,
        confirmation_handler: ConfirmationHandler | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.settings = settings or get_settings()
        self.notifier: EventNotifier = notifier or EventBus()
        self.confirmation_handler = confirmation_handler

        self.tool_registry = ToolRegistry()
        self.workspace = WorkspaceContext(self.settings.workspace_directories or [self.settings.target_dir])
        self.shell = ShellExecutionService()
        self.tool_registry.register_tool(
            PythonCodeTool(workspace=self.workspace, settings=self.settings, shell=self.shell)
        )

        self.history = HistoryStore(self.settings.history_db_path)
        self.pool = SessionClientPool(
            client_factory or self._create_agent_client,
            self.history.save,
            self.history.restore,
            idle_timeout=self.settings.client_idle_timeout,
            notifier=self.notifier,
        )
        self.mcp = ToolServerManager(self.tool_registry, self.notifier, self.settings)
        self.chat = ChatService(self.pool, self.settings.stream_timeout)

        self._unsubscribe = self.notifier.subscribe(EVENT_MCP_CLIENT_UPDATE, self._on_mcp_update)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def _tool_context(self, call_id: str | None) -> ToolCallContext:
        context = ToolCallContext(confirm=self.confirmation_handler)
        if call_id:
            context.call_id = call_id
        return context

    def _create_agent_client(self, session_id: str) -> AgentClient:
        return AgentClient(
            session_id,
            self.tool_registry,
            settings=self.settings,
            context_factory=self._tool_context,
        )

    def _on_mcp_update(self, event: BaseModel) -> None:
        if not isinstance(event, MCPClientUpdateEvent) or event.discovery_state is not DiscoveryState.COMPLETED:
            return
        # Pooled clients were bound to the tool set that existed when they were created
        task = asyncio.get_running_loop().create_task(self.pool.refresh_tools())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def start(self) -> None:
        """Configure the model provider and begin tool-server discovery."""
        setup_logging(debug=self.settings.debug)

        if self.settings.openai_api_key:
            client = create_openai_client(
                self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
                http_client=create_http_client(read_timeout=self.settings.http_read_timeout),
            )
            set_default_openai_client(client)
            set_tracing_disabled(True)
            logger.info(f"Model provider configured (default model: {self.settings.default_model})")
        else:
            logger.warning("OPENAI_API_KEY not set, using the SDK's environment defaults")

        await self.mcp.discover_all(self.settings, background=True)
        logger.info(f"Runtime started with workspace roots: {[str(d) for d in self.workspace.get_directories()]}")

    async def shutdown(self) -> None:
        """Save and release every session, then disconnect every tool server."""
        logger.info("Shutting down runtime")
        self._unsubscribe()
        try:
            await self.pool.shutdown()
        finally:
            await self.mcp.stop()
            for task in list(self._background_tasks):
                task.cancel()
            if self._background_tasks:
                await asyncio.gather(*self._background_tasks, return_exceptions=True)
            self.history.close()
        logger.info("Runtime shutdown complete")
