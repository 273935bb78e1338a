"""
Pydantic models for MCP (Model Context Protocol) servers.

These models provide type safety for:
- Server launch/connection configuration (MCPServerConfig)
- Tool definitions (MCPTool)
- Tool execution results (MCPResult)
- Discovery and per-server connection state
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DiscoveryState(str, Enum):
    """Coarse state of the global discovery pass."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ServerStatus(str, Enum):
    """Lifecycle of a single tool-server connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    DISCOVERING = "discovering"
    REGISTERED = "registered"
    FAILED = "failed"


class ExtensionInfo(BaseModel):
    """Extension that contributed a server declaration."""

    name: str
    is_active: bool = True


class MCPServerConfig(BaseModel):
    """Launch or connection configuration for one external tool server.

    A ``command`` selects the stdio transport, a ``url`` (ws:// or wss://)
    selects the websocket transport.
    """

    model_config = ConfigDict(extra="ignore")

    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    url: str | None = None
    timeout: float | None = Field(default=None, description="Per-request timeout override (seconds)")
    trust: bool = Field(default=False, description="Skip confirmation for this server's tools")
    description: str | None = None
    include_tools: list[str] | None = None
    exclude_tools: list[str] | None = None
    extension: ExtensionInfo | None = None

    @model_validator(mode="after")
    def require_transport(self) -> MCPServerConfig:
        if not self.command and not self.url:
            raise ValueError("MCP server config needs either 'command' or 'url'")
        return self

    @property
    def is_active(self) -> bool:
        return self.extension is None or self.extension.is_active


class MCPTool(BaseModel):
    """Model for an MCP tool definition as returned by ``tools/list``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: str | None = None
    inputSchema: dict[str, Any] = Field(default_factory=dict)


class MCPResult(BaseModel):
    """Model for an MCP tool execution result as returned by ``tools/call``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: list[dict[str, Any]] | str | Any = Field(default_factory=list)
    isError: bool = False
