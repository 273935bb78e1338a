"""
Code Interpreter - run model-written Python in the workspace.

The model supplies the script body and the packages it needs. The harness
asks for confirmation (always, with the code visible), installs missing
packages and runs the script with the progress protocol available as
``report_progress``.
"""

from __future__ import annotations

from typing import Any

from agent_runtime.core.constants import Settings
from agent_runtime.models.error_models import ToolErrorType
from agent_runtime.models.tool_models import ToolResult
from agent_runtime.services.shell_execution import ShellExecutionService
from agent_runtime.tools.python_tool import BasePythonTool
from agent_runtime.utils.workspace import WorkspaceContext

# ============================================
# CONFIGURATION
# ============================================

TOOL_NAME = "execute_python"
DISPLAY_NAME = "Python Code"

#: Output longer than this is truncated in the user-facing display
MAX_DISPLAY_CHARS = 4000

DESCRIPTION = """Execute Python code in the user's workspace.

Use print() for anything you want to see in the result. The working directory
is the first workspace folder. Long tasks may call
report_progress(stage, progress=None, message=None, **details) with a stage of
'loading', 'cleaning', 'analyzing', 'processing', 'reporting', 'completed' or
'failed' and progress between 0 and 100.

List third-party packages in `requirements`; missing ones are installed with
pip before the script runs."""

PARAMETER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "code": {
            "type": "string",
            "description": "Python source to execute",
        },
        "requirements": {
            "type": "array",
            "items": {"type": "string"},
            "description": "pip requirement strings the code needs, e.g. 'pandas>=2' or 'pandas[excel]'",
        },
    },
    "required": ["code"],
    "additionalProperties": False,
}


class PythonCodeTool(BasePythonTool):
    """Runs caller-supplied code with caller-supplied requirements."""

    show_python_code = True

    def __init__(
        self,
        *,
        workspace: WorkspaceContext,
        settings: Settings | None = None,
        shell: ShellExecutionService | None = None,
    ):
        super().__init__(
            TOOL_NAME,
            DISPLAY_NAME,
            DESCRIPTION,
            PARAMETER_SCHEMA,
            workspace=workspace,
            settings=settings,
            shell=shell,
        )

    def generate_python_code(self, params: dict[str, Any]) -> str:
        return str(params.get("code", ""))

    def get_requirements(self, params: dict[str, Any]) -> list[str]:
        requirements = params.get("requirements") or []
        return [str(r).strip() for r in requirements if str(r).strip()]

    def parse_result(self, output: str, params: dict[str, Any]) -> ToolResult:
        if output.startswith("Error: "):
            display = output if len(output) <= MAX_DISPLAY_CHARS else output[:MAX_DISPLAY_CHARS] + "\n..."
            return ToolResult.failure(output, ToolErrorType.EXECUTION_FAILED, display=display)

        if not output:
            return ToolResult(llm_content="(no output)", return_display="Code executed with no output")

        display = output if len(output) <= MAX_DISPLAY_CHARS else output[:MAX_DISPLAY_CHARS] + "\n..."
        return ToolResult(llm_content=output, return_display=display)
