"""
Code execution harness for tools implemented as generated Python scripts.

A ``BasePythonTool`` subclass only generates a script body from its params
and parses the script's printed output. The invocation takes care of the
rest, in order:

1. confirmation gate (per-tool allowlist)
2. interpreter lookup and workspace boundary check
3. dependency resolution (probe, then one batched install)
4. instrumentation into a temporary script
5. spawn with live output and progress streaming
6. result decoding and ``parse_result``

Every failure is returned as a structured ``ToolResult`` and reported as a
``FAILED`` progress event.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
import uuid

from abc import abstractmethod
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from agent_runtime.core.constants import (
    DESCRIPTION_IMPORT_SCAN_CHARS,
    PIP_OUTPUT_TAIL_CHARS,
    PYTHON_ALLOWLIST_SUFFIX,
    SCRIPT_TEMP_PREFIX,
    Settings,
    get_settings,
)
from agent_runtime.core.errors import ShellExecutionError, get_error_message
from agent_runtime.models.error_models import ToolErrorType
from agent_runtime.models.event_models import ToolExecutionStage, ToolProgressEvent
from agent_runtime.models.tool_models import (
    ExecConfirmationDetails,
    ToolConfirmationOutcome,
    ToolResult,
)
from agent_runtime.services.shell_execution import ShellExecutionService, ShellOutputEvent
from agent_runtime.tools.base import BaseTool, ToolCallContext, await_confirmation
from agent_runtime.tools.dependencies import DependencyResolver
from agent_runtime.tools.progress_protocol import (
    ProgressStreamParser,
    decode_tool_result,
    extract_progress,
    map_python_stage,
    wrap_script,
)
from agent_runtime.utils.metrics import python_tool_duration_seconds, python_tool_executions_total
from agent_runtime.utils.python_path import get_python_interpreter, python_interpreter_exists
from agent_runtime.utils.workspace import WorkspaceContext

logger = logging.getLogger(__name__)

EmitProgress = Callable[..., None]

_IMPORT_LINE = re.compile(r"^(?:import .+|from .+ import .+)$", re.MULTILINE)


class BasePythonTool(BaseTool):
    """Tool whose work is done by a generated Python script."""

    #: Show the generated code in the confirmation prompt
    show_python_code: bool = False

    def __init__(
        self,
        name: str,
        display_name: str,
        description: str,
        parameter_schema: dict[str, Any],
        *,
        workspace: WorkspaceContext,
        requirements: Sequence[str] = (),
        settings: Settings | None = None,
        shell: ShellExecutionService | None = None,
    ):
        super().__init__(name, display_name, description, parameter_schema)
        self.workspace = workspace
        self.default_requirements = list(requirements)
        self.settings = settings or get_settings()
        self.shell = shell or ShellExecutionService()
        self.allowlist: set[str] = set()

    @property
    def allowlist_key(self) -> str:
        return f"{self.name}{PYTHON_ALLOWLIST_SUFFIX}"

    @abstractmethod
    def generate_python_code(self, params: dict[str, Any]) -> str:
        """Script body for this call."""

    @abstractmethod
    def parse_result(self, output: str, params: dict[str, Any]) -> ToolResult:
        """Turn the script's printed output into a tool result."""

    def get_requirements(self, params: dict[str, Any]) -> list[str]:
        return list(self.default_requirements)

    def requires_confirmation(self, params: dict[str, Any]) -> bool:
        return True

    def build_invocation(self, params: dict[str, Any]) -> PythonToolInvocation:
        return PythonToolInvocation(self, params)

    async def run(self, params: dict[str, Any], context: ToolCallContext) -> ToolResult:
        return await self.build_invocation(params).execute(context)


class PythonToolInvocation:
    """One execution of a ``BasePythonTool``; never reused."""

    def __init__(self, tool: BasePythonTool, params: dict[str, Any]):
        self.tool = tool
        self.params = params
        self.requirements = tool.get_requirements(params)

    def get_description(self) -> str:
        code = self.tool.generate_python_code(self.params)
        description = f"Execute Python code for {self.tool.display_name}"

        preview = code[:DESCRIPTION_IMPORT_SCAN_CHARS]
        imports = [line.split(" ")[1] for line in _IMPORT_LINE.findall(preview)]
        if imports:
            description += f" (imports: {', '.join(imports)})"
        return description

    def should_confirm_execute(self) -> ExecConfirmationDetails | None:
        """Confirmation prompt, or None when the call may proceed without one."""
        if not self.tool.requires_confirmation(self.params):
            return None

        root_command = self.tool.allowlist_key
        if root_command in self.tool.allowlist:
            return None

        code = self.tool.generate_python_code(self.params)
        requirements_str = f" (requires: {', '.join(self.requirements)})" if self.requirements else ""

        async def on_confirm(outcome: ToolConfirmationOutcome) -> None:
            if outcome is ToolConfirmationOutcome.PROCEED_ALWAYS:
                self.tool.allowlist.add(root_command)

        return ExecConfirmationDetails(
            title=f"Confirm {self.tool.display_name} Execution",
            command=f"python {self.tool.name}{requirements_str}\n\n{code}",
            root_command=root_command,
            show_python_code=self.tool.show_python_code,
            python_code=code,
            on_confirm=on_confirm,
        )

    # ============================================
    # EXECUTION
    # ============================================

    async def execute(self, context: ToolCallContext) -> ToolResult:
        tool = self.tool
        started = time.monotonic()
        outcome = "failed"

        def emit(
            stage: ToolExecutionStage,
            progress: float | None = None,
            message: str | None = None,
            details: dict[str, Any] | None = None,
        ) -> None:
            if progress is not None:
                progress = max(0.0, min(100.0, progress))
            context.report_progress(
                ToolProgressEvent(
                    call_id=context.call_id,
                    tool_name=tool.name,
                    stage=stage,
                    progress=progress,
                    message=message,
                    details=details,
                )
            )

        try:
            confirmation = self.should_confirm_execute()
            if confirmation is not None:
                answer = await await_confirmation(confirmation, context)
                if answer is ToolConfirmationOutcome.CANCEL:
                    outcome = "rejected"
                    emit(ToolExecutionStage.FAILED, None, "Execution declined")
                    return ToolResult.failure(
                        f"User declined to run {tool.name}.",
                        ToolErrorType.EXECUTION_CANCELLED,
                        display=f"{tool.display_name} cancelled",
                    )

            result = await self._run_pipeline(context, emit)
            outcome = "completed" if result.success else "failed"
            if result.error is not None and result.error.type is ToolErrorType.EXECUTION_CANCELLED:
                outcome = "cancelled"
            return result
        except Exception as e:
            message = get_error_message(e)
            logger.error(f"{tool.name} failed: {message}", exc_info=True)
            emit(ToolExecutionStage.FAILED, None, f"Execution failed: {message}")
            return ToolResult.failure(
                f"Failed to execute {tool.name}: {message}",
                ToolErrorType.EXECUTION_FAILED,
                display=f"{tool.display_name} failed: {message}",
            )
        finally:
            python_tool_executions_total.labels(tool_name=tool.name, outcome=outcome).inc()
            python_tool_duration_seconds.labels(tool_name=tool.name).observe(time.monotonic() - started)

    async def _run_pipeline(self, context: ToolCallContext, emit: EmitProgress) -> ToolResult:
        tool = self.tool
        token = context.cancellation_token

        emit(ToolExecutionStage.PREPARING, 0, "Initializing Python environment")
        python = get_python_interpreter(tool.settings)
        if not python_interpreter_exists(python):
            emit(ToolExecutionStage.FAILED, None, "Python interpreter not found")
            return ToolResult.failure(
                f"Python interpreter not found at: {python}",
                ToolErrorType.PYTHON_NOT_FOUND,
                display="Python interpreter not found",
            )
        emit(ToolExecutionStage.PREPARING, 10, "Python environment ready")

        working_dir, boundary_error = self._resolve_working_directory()
        if boundary_error is not None:
            emit(ToolExecutionStage.FAILED, None, "Working directory not in workspace")
            return boundary_error

        if self.requirements:
            install_error = await self._resolve_dependencies(python, working_dir, context, emit)
            if install_error is not None:
                return install_error

        emit(ToolExecutionStage.EXECUTING, 60, "Generating Python script")
        script_path = self._write_script(wrap_script(tool.generate_python_code(self.params)))

        try:
            emit(ToolExecutionStage.EXECUTING, 70, "Running Python script")
            parsers = {"stdout": ProgressStreamParser(), "stderr": ProgressStreamParser()}

            def on_output(event: ShellOutputEvent) -> None:
                cleaned, envelopes = parsers[event.stream].feed(event.chunk)
                for envelope in envelopes:
                    emit(map_python_stage(envelope.stage), envelope.progress, envelope.message, envelope.details)
                context.write_output(cleaned)

            execution = await tool.shell.execute(
                [python, script_path],
                cwd=working_dir,
                on_output=on_output,
                cancellation_token=token,
                env={"PYTHONIOENCODING": "utf-8"},
            )
            for parser in parsers.values():
                context.write_output(parser.flush())
        finally:
            self._remove_script(script_path)

        if execution.error is not None:
            raise ShellExecutionError(f"Failed to start {python}: {execution.error}") from execution.error
        if execution.aborted:
            emit(ToolExecutionStage.FAILED, None, "Execution cancelled")
            return ToolResult.failure(
                f"{tool.name} was cancelled before it finished.",
                ToolErrorType.EXECUTION_CANCELLED,
                display=f"{tool.display_name} cancelled",
            )

        emit(ToolExecutionStage.PROCESSING, 90, "Processing results")
        raw_output, _ = extract_progress(execution.output)
        parsed = tool.parse_result(decode_tool_result(raw_output), self.params)

        if execution.exit_code != 0:
            logger.warning(f"{tool.name} script exited with code {execution.exit_code}")
            if parsed.success:
                parsed = ToolResult.failure(
                    parsed.llm_content,
                    ToolErrorType.EXECUTION_FAILED,
                    display=f"{tool.display_name} failed (exit code {execution.exit_code})",
                )

        if not parsed.success:
            emit(ToolExecutionStage.FAILED, None, "Script failed")
            return parsed

        emit(ToolExecutionStage.COMPLETED, 100, "Execution completed successfully")
        return parsed

    # ============================================
    # HELPERS
    # ============================================

    def _resolve_working_directory(self) -> tuple[Path, ToolResult | None]:
        """First workspace root, else the target dir; must lie inside the workspace."""
        workspace = self.tool.workspace
        directories = workspace.get_directories()
        working_dir = directories[0] if directories else Path(self.tool.settings.target_dir)

        if workspace.is_path_within_workspace(working_dir):
            return working_dir, None

        if directories:
            roots = "\n".join(f"  - {d}" for d in directories)
            message = (
                f'Error: Python execution directory "{working_dir}" must be within workspace directories:\n'
                f"{roots}\n\nPlease add the target directory to your workspace first."
            )
        else:
            message = (
                "Error: No workspace directories configured. Cannot execute Python tools outside workspace."
                f"\n\nDirectory attempted: {working_dir}"
            )
        return working_dir, ToolResult.failure(
            message,
            ToolErrorType.PATH_NOT_IN_WORKSPACE,
            display=f"Directory not in workspace: {working_dir}",
        )

    async def _resolve_dependencies(
        self, python: Path, working_dir: Path, context: ToolCallContext, emit: EmitProgress
    ) -> ToolResult | None:
        requirements = self.requirements
        emit(
            ToolExecutionStage.INSTALLING_DEPS,
            20,
            f"Checking {len(requirements)} dependencies",
            {"packages": requirements},
        )
        resolver = DependencyResolver(python, self.tool.shell, cwd=working_dir)
        missing = await resolver.find_missing(requirements, context.cancellation_token)

        if not missing:
            emit(ToolExecutionStage.INSTALLING_DEPS, 50, "All required packages already installed")
            context.write_output("All required packages already installed\n\n")
            return None

        emit(
            ToolExecutionStage.INSTALLING_DEPS,
            30,
            f"Installing {len(missing)} packages: {', '.join(missing)}",
            {"missing_packages": missing},
        )
        context.write_output(f"Installing missing Python packages: {', '.join(missing)}...\n")

        install = await resolver.install(missing, cancellation_token=context.cancellation_token)
        if not install.success and (install.aborted or context.cancellation_token.is_cancelled):
            emit(ToolExecutionStage.FAILED, None, "Execution cancelled")
            return ToolResult.failure(
                f"{self.tool.name} was cancelled while installing requirements.",
                ToolErrorType.EXECUTION_CANCELLED,
                display=f"{self.tool.display_name} cancelled",
            )
        if not install.success:
            emit(ToolExecutionStage.FAILED, None, "Failed to install dependencies")
            message = f"Failed to install Python requirements: {install.error}"
            if pip_tail := install.output[-PIP_OUTPUT_TAIL_CHARS:].strip():
                message += f"\n\npip output:\n{pip_tail}"
            return ToolResult.failure(
                message,
                ToolErrorType.DEPENDENCY_INSTALL_FAILED,
                display="Failed to install Python requirements",
            )

        emit(ToolExecutionStage.INSTALLING_DEPS, 50, "Dependencies installed successfully")
        context.write_output("Packages installed successfully\n\n")
        return None

    def _write_script(self, source: str) -> Path:
        fd, path = tempfile.mkstemp(
            prefix=f"{SCRIPT_TEMP_PREFIX}{self.tool.name}_{uuid.uuid4().hex[:8]}_",
            suffix=".py",
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(source)
        return Path(path)

    def _remove_script(self, path: Path) -> None:
        if self.tool.settings.keep_scripts:
            logger.debug(f"Keeping instrumented script at {path}")
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete temporary Python script {path}: {e}")
