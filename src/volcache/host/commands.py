"""Host command execution.

Every privileged host operation (mkfs, mount, systemctl, lsblk) goes through
a ``CommandRunner`` so the orchestration code can be exercised with a
scripted fake. ``SubprocessCommandRunner`` is the real implementation.

Security Note: uses asyncio.create_subprocess_exec(); arguments are passed
as a list and never interpolated into a shell command.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from volcache.core.constants import (
    COMMAND_OUTPUT_LOG_HEAD,
    COMMAND_OUTPUT_LOG_LIMIT,
    COMMAND_TIMEOUT_SECONDS,
)
from volcache.core.errors import CommandError
from volcache.core.logging import get_logger

_logger = get_logger("host.commands")

GRACEFUL_TERMINATION_TIMEOUT: float = 5.0


@dataclass
class CommandResult:
    """Outcome of one host command. ``output`` is stdout and stderr combined."""

    argv: list[str]
    exit_code: int | None
    output: str
    duration_seconds: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class CommandRunner(Protocol):
    """Runs a program to completion and returns its combined output."""

    async def run(self, argv: Sequence[str], *, check: bool = True) -> CommandResult:
        """Run ``argv``.

        Raises:
            CommandError: If ``check`` is True and the command did not exit 0.
        """
        ...


def truncate_output(output: str) -> str:
    """Shorten command output for logging."""
    if len(output) > COMMAND_OUTPUT_LOG_LIMIT:
        return output[:COMMAND_OUTPUT_LOG_HEAD] + "... (output truncated)"
    return output


def raise_for_result(result: CommandResult) -> None:
    """Raise CommandError unless ``result`` is a successful exit."""
    if result.ok:
        return
    command = " ".join(result.argv)
    if result.timed_out:
        reason = f"timed out after {result.duration_seconds:.0f}s"
    else:
        reason = f"exited with {result.exit_code}"
    raise CommandError(
        f"command '{command}' {reason}: {result.output.strip()}",
        argv=result.argv,
        exit_code=result.exit_code,
        output=result.output,
        timed_out=result.timed_out,
    )


class SubprocessCommandRunner:
    """Runs commands as child processes with a per-command timeout.

    Usage:
        runner = SubprocessCommandRunner(timeout_seconds=120)
        result = await runner.run(["lsblk", "-d", "-n", "-o", "PATH,MODEL"])
    """

    def __init__(self, timeout_seconds: float = COMMAND_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    async def run(self, argv: Sequence[str], *, check: bool = True) -> CommandResult:
        cmd = list(argv)
        _logger.info("command_executing", command=" ".join(cmd))
        start_time = time.monotonic()

        try:
            # start_new_session puts the child in its own process group for cleanup
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandError(
                f"command '{' '.join(cmd)}' could not be started: {e}",
                argv=cmd,
            ) from e

        timed_out = False
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except TimeoutError:
            await self._terminate(process)
            stdout = b""
            timed_out = True
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        result = CommandResult(
            argv=cmd,
            exit_code=process.returncode,
            output=stdout.decode("utf-8", errors="replace"),
            duration_seconds=time.monotonic() - start_time,
            timed_out=timed_out,
        )

        if result.ok:
            _logger.info(
                "command_succeeded",
                command=" ".join(cmd),
                output=truncate_output(result.output),
                duration_seconds=round(result.duration_seconds, 2),
            )
        else:
            _logger.warning(
                "command_failed",
                command=" ".join(cmd),
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                output=truncate_output(result.output),
            )
        if check:
            raise_for_result(result)
        return result

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Gracefully terminate, then kill the whole process group."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=GRACEFUL_TERMINATION_TIMEOUT)
        except ProcessLookupError:
            return
        except TimeoutError:
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            except (OSError, ProcessLookupError):
                pass  # group already gone
            await process.wait()
