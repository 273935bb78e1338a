"""Tests for dependency resolution."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from agent_runtime.services.shell_execution import ShellExecutionResult
from agent_runtime.tools.dependencies import DependencyResolver, declares_extras, requirement_base_name

PYTHON = Path("/usr/bin/python3")


def shell_with_probe(installed: set[str]) -> Mock:
    """Shell whose ``pip show`` succeeds only for ``installed`` packages."""

    async def execute(argv: list[str], **kwargs: object) -> ShellExecutionResult:
        if "show" in argv:
            return ShellExecutionResult(exit_code=0 if argv[-1] in installed else 1)
        return ShellExecutionResult(exit_code=0)

    shell = Mock()
    shell.execute = AsyncMock(side_effect=execute)
    return shell


class TestRequirementParsing:
    @pytest.mark.parametrize(
        ("requirement", "expected"),
        [
            ("pandas", "pandas"),
            ("pandas>=2.0", "pandas"),
            ("pandas[excel]>=2.0", "pandas"),
            ("requests ; python_version>'3.8'", "requests"),
            ("  numpy~=1.26 ", "numpy"),
            ("scipy!=1.0", "scipy"),
        ],
    )
    def test_requirement_base_name(self, requirement: str, expected: str) -> None:
        assert requirement_base_name(requirement) == expected

    def test_declares_extras(self) -> None:
        assert declares_extras("pandas[excel]")
        assert not declares_extras("pandas>=2")


class TestFindMissing:
    @pytest.mark.asyncio
    async def test_extras_always_scheduled(self) -> None:
        """A bracketed requirement is installed even when the probe would succeed."""
        shell = shell_with_probe(installed={"pandas"})
        resolver = DependencyResolver(PYTHON, shell)

        missing = await resolver.find_missing(["pandas[excel]"])

        assert missing == ["pandas[excel]"]
        shell.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_plain_requirement_only_when_probe_fails(self) -> None:
        shell = shell_with_probe(installed={"numpy"})
        resolver = DependencyResolver(PYTHON, shell)

        missing = await resolver.find_missing(["numpy>=1.0", "polars", "pandas[excel]"])

        assert missing == ["polars", "pandas[excel]"]
        probed = [call.args[0][-1] for call in shell.execute.await_args_list]
        assert probed == ["numpy", "polars"]

    @pytest.mark.asyncio
    async def test_pip_show_runs_in_resolver_cwd(self, tmp_path: Path) -> None:
        shell = shell_with_probe(installed=set())
        resolver = DependencyResolver(PYTHON, shell, cwd=tmp_path)

        await resolver.find_missing(["polars"])

        assert shell.execute.await_args.kwargs["cwd"] == tmp_path

    @pytest.mark.asyncio
    async def test_probe_exception_counts_as_missing(self) -> None:
        shell = Mock()
        shell.execute = AsyncMock(side_effect=RuntimeError("boom"))
        resolver = DependencyResolver(PYTHON, shell)

        assert await resolver.find_missing(["requests"]) == ["requests"]

    @pytest.mark.asyncio
    async def test_spawn_error_counts_as_missing(self) -> None:
        shell = Mock()
        shell.execute = AsyncMock(return_value=ShellExecutionResult(error=FileNotFoundError("no python")))
        resolver = DependencyResolver(PYTHON, shell)

        assert not await resolver.is_installed("requests")


class TestInstall:
    @pytest.mark.asyncio
    async def test_single_batched_pip_call(self) -> None:
        shell = shell_with_probe(installed=set())
        resolver = DependencyResolver(PYTHON, shell)

        result = await resolver.install(["polars", "pandas[excel]"])

        assert result.success
        shell.execute.assert_awaited_once()
        argv = shell.execute.await_args.args[0]
        assert argv == [PYTHON, "-m", "pip", "install", "polars", "pandas[excel]", "--quiet"]

    @pytest.mark.asyncio
    async def test_install_runs_in_resolver_cwd(self, tmp_path: Path) -> None:
        shell = shell_with_probe(installed=set())
        resolver = DependencyResolver(PYTHON, shell, cwd=tmp_path)

        await resolver.install(["polars"])

        assert shell.execute.await_args.kwargs["cwd"] == tmp_path

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails(self) -> None:
        shell = Mock()
        shell.execute = AsyncMock(return_value=ShellExecutionResult(exit_code=1, output="No matching distribution"))
        resolver = DependencyResolver(PYTHON, shell)

        result = await resolver.install(["nonexistent-pkg"])

        assert not result.success
        assert result.error == "pip exited with code 1"
        assert "No matching distribution" in result.output

    @pytest.mark.asyncio
    async def test_cancelled_install_fails(self) -> None:
        shell = Mock()
        shell.execute = AsyncMock(return_value=ShellExecutionResult(exit_code=None, aborted=True))
        resolver = DependencyResolver(PYTHON, shell)

        result = await resolver.install(["polars"])

        assert result.error == "Installation cancelled"
        assert result.aborted

    @pytest.mark.asyncio
    async def test_nothing_to_install(self) -> None:
        shell = Mock()
        shell.execute = AsyncMock()
        resolver = DependencyResolver(PYTHON, shell)

        result = await resolver.install([])

        assert result.success
        shell.execute.assert_not_awaited()
