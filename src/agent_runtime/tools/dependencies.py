"""
Dependency resolver for generated scripts.

Decides which declared requirements are missing from the interpreter and
installs them in one batched ``pip install``. Requirements that declare
extras (``pkg[extra]``) are always installed: ``pip show`` only knows the
base distribution, not whether the extras' dependencies are present.
"""

from __future__ import annotations

import re

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from agent_runtime.core.constants import PIP_INSTALL_FLAGS, PIP_OUTPUT_TAIL_CHARS
from agent_runtime.services.shell_execution import OutputCallback, ShellExecutionService
from agent_runtime.utils.cancellation import CancellationToken
from agent_runtime.utils.logger import logger
from agent_runtime.utils.metrics import dependency_installs_total

_BASE_NAME_SPLIT = re.compile(r"[<>=!~;\s\[]")


def requirement_base_name(requirement: str) -> str:
    """``"pandas[excel]>=2.0"`` -> ``"pandas"``."""
    return _BASE_NAME_SPLIT.split(requirement.strip(), maxsplit=1)[0]


def declares_extras(requirement: str) -> bool:
    return "[" in requirement


@dataclass
class InstallResult:
    """Outcome of ``DependencyResolver.install``."""

    packages: list[str] = field(default_factory=list)
    exit_code: int | None = 0
    output: str = ""
    error: str | None = None
    aborted: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and self.exit_code == 0


class DependencyResolver:
    """Probes and installs requirements with ``<python> -m pip``, run from ``cwd``."""

    def __init__(
        self,
        python_path: Path,
        shell: ShellExecutionService | None = None,
        cwd: Path | None = None,
    ) -> None:
        self.python_path = python_path
        self.shell = shell or ShellExecutionService()
        self.cwd = cwd

    async def is_installed(self, requirement: str, cancellation_token: CancellationToken | None = None) -> bool:
        """Probe with ``pip show``. Any probe failure counts as not installed."""
        package = requirement_base_name(requirement)
        if not package:
            return False
        try:
            result = await self.shell.execute(
                [self.python_path, "-m", "pip", "show", package],
                cwd=self.cwd,
                cancellation_token=cancellation_token,
            )
        except Exception as e:
            logger.warning(f"pip show probe failed for {package}: {e}")
            return False
        return result.error is None and result.exit_code == 0

    async def find_missing(
        self,
        requirements: Sequence[str],
        cancellation_token: CancellationToken | None = None,
    ) -> list[str]:
        """Requirements to install, in declaration order."""
        missing: list[str] = []
        for requirement in requirements:
            if declares_extras(requirement):
                missing.append(requirement)
                continue
            if not await self.is_installed(requirement, cancellation_token):
                missing.append(requirement)
        return missing

    async def install(
        self,
        packages: Sequence[str],
        *,
        on_output: OutputCallback | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> InstallResult:
        """Install ``packages`` with a single pip invocation."""
        result = InstallResult(packages=list(packages))
        if not packages:
            return result

        logger.info(f"Installing {len(packages)} Python packages: {', '.join(packages)}")
        execution = await self.shell.execute(
            [self.python_path, "-m", "pip", "install", *packages, *PIP_INSTALL_FLAGS],
            cwd=self.cwd,
            on_output=on_output,
            cancellation_token=cancellation_token,
        )
        result.exit_code = execution.exit_code
        result.output = execution.output
        result.aborted = execution.aborted
        if execution.error is not None:
            result.error = str(execution.error)
        elif execution.aborted:
            result.error = "Installation cancelled"
        elif execution.exit_code != 0:
            result.error = f"pip exited with code {execution.exit_code}"

        dependency_installs_total.labels(status="success" if result.success else "error").inc()
        if not result.success:
            logger.error(f"Dependency install failed: {result.error}", output=execution.output[-PIP_OUTPUT_TAIL_CHARS:])
        return result
