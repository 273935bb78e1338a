"""Tests for ToolServerManager discovery, isolation and shutdown."""

from __future__ import annotations

import asyncio

from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import pytest

from agent_runtime.core.constants import Settings
from agent_runtime.core.errors import DiscoveryNotCompletedError, ToolNotFoundError
from agent_runtime.integrations.events import EventBus
from agent_runtime.integrations.mcp_manager import ToolServerManager
from agent_runtime.models.event_models import MCPClientUpdateEvent, UserFeedbackEvent
from agent_runtime.models.mcp_models import DiscoveryState, MCPResult, MCPServerConfig, MCPTool, ServerStatus
from agent_runtime.tools.registry import ToolRegistry


class FakeTransport:
    """Transport whose client serves a fixed tool list, or fails to connect."""

    def __init__(self, server_name: str, tools: list[str], fail: bool = False, gate: asyncio.Event | None = None):
        self.server_name = server_name
        self.fail = fail
        self.gate = gate
        self.client = Mock()
        self.client.list_tools = AsyncMock(return_value=[MCPTool(name=t, description=f"{t} tool") for t in tools])
        self.client.call_tool = AsyncMock(return_value=MCPResult(content=[{"type": "text", "text": "ok"}]))
        self.disconnect = AsyncMock()

    async def connect(self) -> Any:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionRefusedError(f"{self.server_name} refused")
        return self.client


def settings_for(*names: str, trusted: bool = True) -> Settings:
    return Settings(
        log_to_file=False,
        trusted_folder=trusted,
        mcp_servers={name: MCPServerConfig(command=f"{name}-server") for name in names},
    )


@pytest.fixture
def transports() -> Generator[dict[str, FakeTransport], None, None]:
    """Patch transport creation; tests pre-register fakes by server name."""
    registry: dict[str, FakeTransport] = {}

    def create(server_name: str, config: MCPServerConfig, **kwargs: Any) -> FakeTransport:
        return registry.setdefault(server_name, FakeTransport(server_name, [f"{server_name}_tool"]))

    with patch("agent_runtime.integrations.mcp_client.create_transport", side_effect=create):
        yield registry


class TestDiscoverAll:
    @pytest.mark.asyncio
    async def test_one_failing_server_does_not_affect_others(self, transports: dict[str, FakeTransport]) -> None:
        """Three servers, one refuses: discovery completes with two registered connections."""
        transports["b"] = FakeTransport("b", [], fail=True)
        bus = EventBus()
        feedback: list[UserFeedbackEvent] = []
        bus.subscribe("user_feedback", feedback.append)
        tool_registry = ToolRegistry()
        manager = ToolServerManager(tool_registry, bus)

        await manager.discover_all(settings_for("a", "b", "c"))

        assert manager.get_discovery_state() is DiscoveryState.COMPLETED
        statuses = manager.get_server_statuses()
        assert statuses == {"a": ServerStatus.REGISTERED, "b": ServerStatus.FAILED, "c": ServerStatus.REGISTERED}
        registered = [name for name, status in statuses.items() if status is ServerStatus.REGISTERED]
        assert len(registered) == 2
        assert sorted(tool_registry.get_tool_names()) == ["a_tool", "c_tool"]
        assert len(feedback) == 1
        assert "'b'" in feedback[0].message
        assert feedback[0].severity == "error"

    @pytest.mark.asyncio
    async def test_zero_tools_fails_discovery(self, transports: dict[str, FakeTransport]) -> None:
        transports["empty"] = FakeTransport("empty", [])
        manager = ToolServerManager(ToolRegistry())

        await manager.discover_all(settings_for("empty"))

        assert manager.get_server_statuses() == {"empty": ServerStatus.FAILED}
        assert manager.get_discovery_state() is DiscoveryState.COMPLETED

    @pytest.mark.asyncio
    async def test_untrusted_workspace_is_skipped(self, transports: dict[str, FakeTransport]) -> None:
        manager = ToolServerManager(ToolRegistry())

        await manager.discover_all(settings_for("a", trusted=False))

        assert manager.get_discovery_state() is DiscoveryState.NOT_STARTED
        assert manager.get_server_statuses() == {}
        assert transports == {}

    @pytest.mark.asyncio
    async def test_background_returns_before_servers_settle(self, transports: dict[str, FakeTransport]) -> None:
        gate = asyncio.Event()
        transports["slow"] = FakeTransport("slow", ["slow_tool"], gate=gate)
        manager = ToolServerManager(ToolRegistry())

        await manager.discover_all(settings_for("slow"), background=True)

        assert manager.get_discovery_state() is DiscoveryState.IN_PROGRESS
        gate.set()
        await manager.wait_for_discovery()
        assert manager.get_discovery_state() is DiscoveryState.COMPLETED
        assert manager.get_server_statuses() == {"slow": ServerStatus.REGISTERED}
        await manager.stop()

    @pytest.mark.asyncio
    async def test_rediscovery_tears_down_previous_connections(self, transports: dict[str, FakeTransport]) -> None:
        tool_registry = ToolRegistry()
        manager = ToolServerManager(tool_registry)
        await manager.discover_all(settings_for("a"))
        first = transports.pop("a")

        await manager.discover_all(settings_for("a"))

        first.disconnect.assert_awaited_once()
        assert tool_registry.get_tool_names() == ["a_tool"]
        assert manager.get_server_statuses() == {"a": ServerStatus.REGISTERED}

    @pytest.mark.asyncio
    async def test_overlapping_passes_reap_the_superseded_connection(self) -> None:
        """A second foreground pass while the first is still connecting leaves no transport behind."""
        gate = asyncio.Event()
        created: list[FakeTransport] = []

        def create(server_name: str, config: MCPServerConfig, **kwargs: Any) -> FakeTransport:
            transport = FakeTransport(server_name, [f"{server_name}_tool"], gate=None if created else gate)
            created.append(transport)
            return transport

        tool_registry = ToolRegistry()
        manager = ToolServerManager(tool_registry)
        with patch("agent_runtime.integrations.mcp_client.create_transport", side_effect=create):
            first = asyncio.create_task(manager.discover_all(settings_for("a")))
            await asyncio.sleep(0.01)
            await manager.discover_all(settings_for("a"))
            await first

            assert manager.get_discovery_state() is DiscoveryState.COMPLETED
            assert manager.get_server_statuses() == {"a": ServerStatus.REGISTERED}
            assert tool_registry.get_tool_names() == ["a_tool"]
            await manager.stop()

        assert len(created) == 2
        assert [t.disconnect.await_count for t in created] == [1, 1]

    @pytest.mark.asyncio
    async def test_cancelled_caller_cancels_its_pass(self, transports: dict[str, FakeTransport]) -> None:
        transports["slow"] = FakeTransport("slow", ["slow_tool"], gate=asyncio.Event())
        manager = ToolServerManager(ToolRegistry())

        caller = asyncio.create_task(manager.discover_all(settings_for("slow")))
        await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        await manager.stop()
        transports["slow"].disconnect.assert_awaited_once()
        assert manager.get_server_statuses() == {}

    @pytest.mark.asyncio
    async def test_update_events_published(self, transports: dict[str, FakeTransport]) -> None:
        bus = EventBus()
        updates: list[MCPClientUpdateEvent] = []
        bus.subscribe("mcp_client_update", updates.append)
        manager = ToolServerManager(ToolRegistry(), bus)

        await manager.discover_all(settings_for("a"))

        assert updates[0].discovery_state is DiscoveryState.IN_PROGRESS
        assert updates[-1].discovery_state is DiscoveryState.COMPLETED
        assert updates[-1].servers == {"a": ServerStatus.REGISTERED}

    @pytest.mark.asyncio
    async def test_command_override_adds_mcp_server(self, transports: dict[str, FakeTransport]) -> None:
        manager = ToolServerManager(ToolRegistry())
        settings = Settings(log_to_file=False, mcp_server_command="python -m my_server")

        await manager.discover_all(settings)

        assert manager.get_server_statuses() == {"mcp": ServerStatus.REGISTERED}


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_with_no_connections_is_noop(self) -> None:
        manager = ToolServerManager(ToolRegistry())

        await manager.stop()
        await manager.stop()

        assert manager.get_server_statuses() == {}
        assert manager.get_discovery_state() is DiscoveryState.NOT_STARTED

    @pytest.mark.asyncio
    async def test_stop_continues_past_disconnect_failure(self, transports: dict[str, FakeTransport]) -> None:
        tool_registry = ToolRegistry()
        manager = ToolServerManager(tool_registry)
        await manager.discover_all(settings_for("a", "b"))
        transports["a"].disconnect.side_effect = RuntimeError("stuck")

        await manager.stop()

        transports["b"].disconnect.assert_awaited_once()
        assert manager.get_server_statuses() == {}
        assert len(tool_registry) == 0


class TestCallTool:
    @pytest.mark.asyncio
    async def test_call_before_discovery_rejected(self) -> None:
        manager = ToolServerManager(ToolRegistry())

        with pytest.raises(DiscoveryNotCompletedError):
            await manager.call_tool("a_tool", {})

    @pytest.mark.asyncio
    async def test_call_routes_to_owning_server(self, transports: dict[str, FakeTransport]) -> None:
        manager = ToolServerManager(ToolRegistry())
        await manager.discover_all(settings_for("a"))

        result = await manager.call_tool("a_tool", {"q": 1})

        assert result.content == [{"type": "text", "text": "ok"}]
        transports["a"].client.call_tool.assert_awaited_once_with("a_tool", {"q": 1})
        await manager.stop()

    @pytest.mark.asyncio
    async def test_unknown_tool(self, transports: dict[str, FakeTransport]) -> None:
        manager = ToolServerManager(ToolRegistry())
        await manager.discover_all(settings_for("a"))

        with pytest.raises(ToolNotFoundError):
            await manager.call_tool("missing", {})
        await manager.stop()
