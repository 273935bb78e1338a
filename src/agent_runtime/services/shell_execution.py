"""
Subprocess execution service.

Spawns a command with ``asyncio.create_subprocess_exec``, streams decoded
stdout/stderr chunks to a callback while they arrive and returns the exit
code together with the full captured output. A cancellation token kills the
child; the stream readers then see EOF and return.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from agent_runtime.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

#: Bytes read from a pipe per iteration
READ_CHUNK_SIZE = 4096


@dataclass
class ShellOutputEvent:
    """One decoded chunk of child output."""

    stream: Literal["stdout", "stderr"]
    chunk: str


OutputCallback = Callable[[ShellOutputEvent], None]


@dataclass
class ShellExecutionResult:
    """Result of one subprocess run.

    ``error`` is set when the process could not be spawned; ``exit_code`` is
    then None. ``aborted`` is True when the cancellation token fired.
    """

    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    output: str = ""
    aborted: bool = False
    error: OSError | None = None
    pid: int | None = None
    chunks: list[ShellOutputEvent] = field(default_factory=list, repr=False)


class ShellExecutionService:
    """Runs commands and streams their output."""

    async def execute(
        self,
        argv: Sequence[str | Path],
        *,
        cwd: str | Path | None = None,
        on_output: OutputCallback | None = None,
        cancellation_token: CancellationToken | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ShellExecutionResult:
        """Run ``argv`` and wait for it to exit.

        Args:
            argv: Program and arguments, not interpreted by a shell
            cwd: Working directory for the child
            on_output: Called for every decoded chunk, in arrival order per stream
            cancellation_token: Kills the child when cancelled
            env: Extra environment variables layered over ``os.environ``

        Returns:
            ShellExecutionResult; spawn failures are reported in ``error``
        """
        result = ShellExecutionResult()
        if cancellation_token is not None and cancellation_token.is_cancelled:
            result.aborted = True
            return result

        child_env = {**os.environ, **env} if env else None
        command = [str(part) for part in argv]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd) if cwd is not None else None,
                env=child_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Failed to spawn {command[0]}: {e}")
            result.error = e
            return result

        result.pid = process.pid

        def kill() -> None:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()

        if cancellation_token is not None:
            cancellation_token.on_cancel(kill)

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        combined: list[str] = []

        def emit(stream: Literal["stdout", "stderr"], text: str, sink: list[str]) -> None:
            sink.append(text)
            combined.append(text)
            event = ShellOutputEvent(stream=stream, chunk=text)
            result.chunks.append(event)
            if on_output is not None:
                on_output(event)

        async def pump(reader: asyncio.StreamReader, stream: Literal["stdout", "stderr"], sink: list[str]) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while chunk := await reader.read(READ_CHUNK_SIZE):
                if text := decoder.decode(chunk):
                    emit(stream, text, sink)
            if tail := decoder.decode(b"", final=True):
                emit(stream, tail, sink)

        assert process.stdout is not None and process.stderr is not None
        try:
            await asyncio.gather(
                pump(process.stdout, "stdout", stdout_parts),
                pump(process.stderr, "stderr", stderr_parts),
            )
            result.exit_code = await process.wait()
        except asyncio.CancelledError:
            kill()
            raise
        finally:
            if cancellation_token is not None:
                cancellation_token.remove_callback(kill)

        result.stdout = "".join(stdout_parts)
        result.stderr = "".join(stderr_parts)
        result.output = "".join(combined)
        result.aborted = cancellation_token is not None and cancellation_token.is_cancelled
        return result
