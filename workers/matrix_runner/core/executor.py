"""
Executor — run one external command and capture its outcome.

A non-zero exit code is ordinary data returned to the caller; only a
failure to launch the process at all raises ExecutionError.  The process
wait is the single await point, so many jobs can share one event loop.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from matrix_runner.errors import ExecutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured streams of one finished command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


Executor = Callable[..., Awaitable[CommandResult]]


def _decode(raw: Optional[bytes]) -> str:
    return raw.decode("utf-8", errors="replace") if raw else ""


async def run_command(
    cmd: str,
    args: Sequence[str] = (),
    env: Optional[Mapping[str, str]] = None,
    workdir: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Execute ``cmd args…`` and return its exit code, stdout and stderr.

    *env* is overlaid on the host environment.  On *timeout* the process
    is killed and ``exit_code = -1, timed_out = True`` is returned.

    Raises ExecutionError if the process cannot be launched.
    """
    argv = [cmd, *args]
    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    logger.debug("exec: %s (cwd=%s)", shlex.join(argv), workdir or ".")
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=workdir,
            env=full_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (OSError, ValueError) as exc:
        # ValueError: "=" in an env name or a NUL byte in an argument
        raise ExecutionError(
            f"could not launch {cmd!r}: {exc}",
            command=shlex.join(argv),
        ) from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _reap(proc)
        return CommandResult(
            exit_code=-1,
            stderr=f"Command timed out after {timeout}s",
            duration_ms=int((time.monotonic() - start) * 1000),
            timed_out=True,
        )
    except BaseException:
        # cancelled: kill and reap the child before propagating
        await _reap(proc)
        raise

    return CommandResult(
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=_decode(stdout),
        stderr=_decode(stderr),
        duration_ms=int((time.monotonic() - start) * 1000),
    )


async def _reap(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* if it is still running and wait for it to exit."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
