"""
Model clients - one conversational model session per pooled entry.

``ModelClient`` is the surface the session pool and chat service rely on.
``AgentClient`` implements it with the openai-agents SDK: registry tools
are exposed as ``FunctionTool``s and history is kept as SDK input items so
it can be persisted and restored verbatim.
"""

from __future__ import annotations

import json

from collections.abc import Callable
from typing import Any, Protocol

from agents import Agent, FunctionTool, Runner, TResponseInputItem
from agents.tool_context import ToolContext
from openai.types.responses import ResponseTextDeltaEvent

from agent_runtime.core.constants import Settings, get_settings
from agent_runtime.core.errors import RuntimeErrorBase
from agent_runtime.tools.base import BaseTool, ToolCallContext
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.utils.logger import logger

#: Event type carrying raw model deltas in the SDK stream
RAW_RESPONSE_EVENT = "raw_response_event"

DEFAULT_INSTRUCTIONS = (
    "You are a helpful assistant working in the user's workspace. "
    "Use the available tools when they help answer the request."
)

DeltaCallback = Callable[[str], None]
ToolContextFactory = Callable[[str | None], ToolCallContext]


class ModelClient(Protocol):
    async def initialize(self) -> None: ...

    async def update_tools(self) -> None: ...

    def get_history(self) -> list[Any]: ...

    def set_history(self, items: list[Any]) -> None: ...

    async def send_message(self, message: str, on_delta: DeltaCallback | None = None) -> str: ...


def to_function_tool(tool: BaseTool, context_factory: ToolContextFactory) -> FunctionTool:
    """Expose a registry tool to the SDK. The model sees ``llm_content``."""

    async def on_invoke_tool(ctx: ToolContext[Any], arguments: str) -> str:
        try:
            params = json.loads(arguments) if arguments else {}
        except json.JSONDecodeError as e:
            return f"Invalid JSON arguments for {tool.name}: {e}"
        if not isinstance(params, dict):
            return f"Arguments for {tool.name} must be a JSON object"

        result = await tool.run(params, context_factory(getattr(ctx, "tool_call_id", None)))
        return result.llm_content

    return FunctionTool(
        name=tool.name,
        description=tool.description,
        params_json_schema=tool.parameter_schema,
        on_invoke_tool=on_invoke_tool,
        strict_json_schema=False,
    )


def _default_context_factory(call_id: str | None) -> ToolCallContext:
    return ToolCallContext(call_id=call_id) if call_id else ToolCallContext()


class AgentClient:
    """``ModelClient`` backed by an openai-agents ``Agent``."""

    def __init__(
        self,
        session_id: str,
        tool_registry: ToolRegistry,
        *,
        settings: Settings | None = None,
        instructions: str = DEFAULT_INSTRUCTIONS,
        context_factory: ToolContextFactory | None = None,
    ):
        self.session_id = session_id
        self.tool_registry = tool_registry
        self.settings = settings or get_settings()
        self.instructions = instructions
        self._context_factory = context_factory or _default_context_factory
        self._agent: Agent | None = None
        self._history: list[TResponseInputItem] = []

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            raise RuntimeErrorBase(f"Client for session {self.session_id} is not initialized")
        return self._agent

    async def initialize(self) -> None:
        self._agent = Agent(
            name="Assistant",
            instructions=self.instructions,
            model=self.settings.default_model,
        )

    async def update_tools(self) -> None:
        """Rebind the agent to the registry's current tools."""
        tools = [to_function_tool(tool, self._context_factory) for tool in self.tool_registry.get_all_tools()]
        self._agent = self.agent.clone(tools=tools)
        logger.debug(f"Session {self.session_id} bound to {len(tools)} tools")

    def get_history(self) -> list[Any]:
        return list(self._history)

    def set_history(self, items: list[Any]) -> None:
        self._history = list(items)

    async def send_message(self, message: str, on_delta: DeltaCallback | None = None) -> str:
        """Run one turn, streaming text deltas to ``on_delta``; returns the final output."""
        turn_input: list[TResponseInputItem] = [*self._history, {"role": "user", "content": message}]
        stream = Runner.run_streamed(self.agent, input=turn_input)

        async for event in stream.stream_events():
            if on_delta is None or event.type != RAW_RESPONSE_EVENT:
                continue
            if isinstance(event.data, ResponseTextDeltaEvent) and event.data.delta:
                on_delta(event.data.delta)

        self._history = stream.to_input_list()
        return str(stream.final_output or "")
