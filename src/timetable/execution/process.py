"""Subprocess runner for SHELL tasks.

Manifesto:
    A shell task is an argv, not a shell line. The command is started
    directly with ``asyncio.create_subprocess_exec`` so parameters are never
    re-parsed, quoted or expanded.

    - **Sentinel exit codes:** a command that cannot be started reports
      ``-1``; one killed at its deadline reports ``-2``. Both are raised as
      typed errors carrying that code, so callers cannot confuse them with
      a real exit status
    - **Bounded capture:** stdout and stderr are merged and kept up to
      ``output_limit`` bytes; the rest is read and discarded so the child
      never blocks on a full pipe
    - **No orphans:** on timeout or cancellation the child is killed and
      reaped before control returns

Tags:
    timetable, execution, subprocess, asyncio, timeout
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass

from timetable.core.errors import CommandTimeoutError, LaunchError
from timetable.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_OUTPUT_LIMIT = 64 * 1024
_READ_CHUNK = 4096


@dataclass
class ShellResult:
    """Outcome of a command that ran to completion (any exit status)."""

    exit_code: int
    output: str = ""
    truncated: bool = False
    pid: int | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class _OutputCollector:
    """Reads a stream to EOF, keeping at most ``limit`` bytes."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.buffer = bytearray()
        self.truncated = False

    async def drain(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            room = self.limit - len(self.buffer)
            if room > 0:
                self.buffer.extend(chunk[:room])
            if len(chunk) > room:
                self.truncated = True

    @property
    def text(self) -> str:
        return self.buffer.decode("utf-8", errors="replace")


async def _kill_and_reap(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def execute_shell_command(
    command: str,
    args: Sequence[str] = (),
    *,
    timeout: float | None = None,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
) -> ShellResult:
    """Run ``command`` with ``args`` as its literal argv tail.

    Args:
        command: Executable name or path, resolved through ``PATH``
        args: Arguments passed verbatim, no shell interpretation
        timeout: Seconds before the process is killed; None or 0 means none
        output_limit: Maximum bytes of combined output to keep

    Returns:
        ShellResult with the child's exit status, including non-zero ones.

    Raises:
        LaunchError: The command could not be started (exit code -1).
        CommandTimeoutError: The deadline passed; the child was killed
            (exit code -2).
        asyncio.CancelledError: Propagated after the child is killed.
    """
    if not command:
        raise LaunchError("empty command")

    argv = [command, *(str(a) for a in args)]
    started = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        logger.debug("process.launch_failed", command=command, error=str(e))
        raise LaunchError(f"cannot start {command!r}: {e}", cause=e) from e

    collector = _OutputCollector(output_limit)

    async def _communicate() -> int:
        await collector.drain(process.stdout)
        return await process.wait()

    try:
        if timeout and timeout > 0:
            exit_code = await asyncio.wait_for(_communicate(), timeout)
        else:
            exit_code = await _communicate()
    except asyncio.TimeoutError:
        await _kill_and_reap(process)
        logger.warning("process.timeout", command=command, pid=process.pid, timeout=timeout)
        raise CommandTimeoutError(
            f"{command!r} timed out after {timeout}s",
            pid=process.pid,
            output=collector.text,
        ) from None
    except asyncio.CancelledError:
        await _kill_and_reap(process)
        logger.info("process.cancelled", command=command, pid=process.pid)
        raise

    result = ShellResult(
        exit_code=exit_code,
        output=collector.text,
        truncated=collector.truncated,
        pid=process.pid,
        duration=time.monotonic() - started,
    )
    logger.debug(
        "process.exited",
        command=command,
        pid=process.pid,
        exit_code=exit_code,
        truncated=result.truncated,
    )
    return result


__all__ = ["DEFAULT_OUTPUT_LIMIT", "ShellResult", "execute_shell_command"]
