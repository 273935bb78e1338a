"""
Exception hierarchy for the agent runtime.

Tool invocations never raise these to the model; they are converted to
structured ``ToolResult`` failures at the tool boundary. They do propagate
out of manager and service APIs.
"""

from __future__ import annotations


class RuntimeErrorBase(Exception):
    """Base exception for agent runtime operations."""

    pass


class ToolServerError(RuntimeErrorBase):
    """Raised for failures talking to an external tool server."""

    def __init__(self, server_name: str, message: str):
        self.server_name = server_name
        super().__init__(f"MCP server '{server_name}': {message}")


class ToolServerConnectError(ToolServerError):
    """Raised when the transport to a tool server cannot be established."""

    pass


class ToolServerDiscoveryError(ToolServerError):
    """Raised when a connected tool server yields no usable tools."""

    pass


class ToolNotFoundError(RuntimeErrorBase):
    """Raised when a tool name is not present in the registry."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool not found: {tool_name}")


class DiscoveryNotCompletedError(RuntimeErrorBase):
    """Raised when server-backed tools are used before any discovery pass finished."""

    pass


class ShellExecutionError(RuntimeErrorBase):
    """Raised when a subprocess cannot be spawned."""

    pass


def get_error_message(error: BaseException | object) -> str:
    """Best human readable message for an arbitrary error value."""
    if isinstance(error, BaseException):
        message = str(error)
        return message or type(error).__name__
    return str(error)
