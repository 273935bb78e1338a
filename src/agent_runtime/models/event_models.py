"""
Event models published by the runtime.

Covers tool progress reported while a generated script runs, pool lifecycle
notifications and the tool-server manager's update and feedback events.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from agent_runtime.models.mcp_models import DiscoveryState, ServerStatus


class ToolExecutionStage(str, Enum):
    """Fixed execution-stage vocabulary; values are the lowercase names."""

    VALIDATING = "validating"
    CONFIRMING = "confirming"
    PREPARING = "preparing"
    INSTALLING_DEPS = "installing_deps"
    EXECUTING = "executing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class ToolProgressEvent(BaseModel):
    """Progress of one tool invocation, forwarded to the caller's progress callback."""

    call_id: str
    tool_name: str
    stage: ToolExecutionStage
    progress: float | None = Field(default=None, ge=0, le=100)
    message: str | None = None
    details: dict[str, Any] | None = None
    timestamp: int = Field(default_factory=_now_ms)


class ProgressEnvelope(BaseModel):
    """Loosely typed progress record decoded from a script's stderr.

    Only ``stage`` is required; anything else the script adds is kept.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    is_progress: bool = Field(default=True, alias="__PROGRESS__")
    stage: str
    progress: float | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    timestamp: float | None = None
    elapsed: float | None = None


class ClientLifecycleEvent(BaseModel):
    """Published by the session pool when a client is created, restored or released."""

    type: Literal["client_created", "client_restored", "client_released"]
    session_id: str
    reason: str | None = None


class MCPClientUpdateEvent(BaseModel):
    """Snapshot of the tool-server connections after any change."""

    type: Literal["mcp_client_update"] = "mcp_client_update"
    discovery_state: DiscoveryState
    servers: dict[str, ServerStatus] = Field(default_factory=dict)


class UserFeedbackEvent(BaseModel):
    """User facing warning or error, e.g. a server that failed discovery."""

    type: Literal["user_feedback"] = "user_feedback"
    severity: Literal["info", "warning", "error"]
    message: str
    error: str | None = None
