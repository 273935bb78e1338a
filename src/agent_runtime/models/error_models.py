"""
Structured tool failure models.

Every failed tool invocation carries a machine-readable ``ToolErrorType``
next to the human-readable message, so callers can branch on the category
without parsing text.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ToolErrorType(str, Enum):
    """Machine codes for tool failures."""

    PYTHON_NOT_FOUND = "python_not_found"
    DEPENDENCY_INSTALL_FAILED = "dependency_install_failed"
    PATH_NOT_IN_WORKSPACE = "path_not_in_workspace"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_CANCELLED = "execution_cancelled"
    MCP_TOOL_ERROR = "mcp_tool_error"
    UNHANDLED_EXCEPTION = "unhandled_exception"


class ToolError(BaseModel):
    """Failure payload attached to a tool result."""

    message: str
    type: ToolErrorType
