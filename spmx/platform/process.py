"""Subprocess execution with Result-based error handling.

Every external tool (git, swift, xcodebuild, libtool) runs through ``run``:
- output is captured into temporary files to avoid pipe deadlocks on large
  build logs,
- the child starts in its own session so the whole process tree can be
  killed on timeout or cancellation,
- a local timeout becomes ``Err(ProcessError(kind="timeout"))``, while
  cancellation raises ``OperationCancelled`` after the tree is killed.

Usage:
    result = run(["git", "--version"], cwd=Path("."), timeout=60.0)
    match result:
        case Ok(stdout):
            print(stdout)
        case Err(error):
            print(error.describe())
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Literal, Protocol

from spmx.core.result import Err, Ok, Result

from .cancel import CancelToken

__all__ = [
    "ProcessError",
    "ProcessErrorKind",
    "ProcessRunner",
    "SubprocessRunner",
    "run",
]

_POLL_INTERVAL_SECONDS = 0.1
_KILL_WAIT_SECONDS = 5.0
_STDERR_TAIL_CHARS = 4000
_POSIX = sys.platform != "win32"

ProcessErrorKind = Literal["failed", "not_found", "start_failed", "timeout"]


@dataclass(frozen=True, slots=True)
class ProcessError:
    """Error from a failed subprocess execution.

    Attributes:
        command: The command that was executed.
        returncode: The exit code of the process (-1 if it never completed).
        stdout: Standard output (may be empty).
        stderr: Standard error (contains error details).
        kind: ``failed`` for a non-zero exit, ``not_found``/``start_failed``
            when the process could not be started, ``timeout`` when the
            local budget expired.
        timeout: The budget that expired, for ``timeout`` errors.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    kind: ProcessErrorKind = "failed"
    timeout: float | None = None

    def __str__(self) -> str:
        """Format error for display."""
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        match self.kind:
            case "not_found":
                return f"{self.program} not found"
            case "start_failed":
                return f"{self.program} could not be started"
            case "timeout":
                return f"{cmd_str} timed out"
            case _:
                return f"{cmd_str} failed (exit {self.returncode})"

    @property
    def program(self) -> str:
        return self.command[0] if self.command else ""

    @property
    def timed_out(self) -> bool:
        return self.kind == "timeout"

    @property
    def output(self) -> str:
        """Combined stderr and stdout, stderr first."""
        return "\n".join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)

    def describe(self) -> str:
        """Full message: command line, exit code, and the tail of stderr."""
        if self.kind in ("not_found", "start_failed"):
            label = "not found" if self.kind == "not_found" else "failed to start"
            return (
                f"Executable '{self.program}' {label}. "
                f"Ensure it is installed and available on PATH. ({self.stderr.strip()})"
            )
        details = (self.stderr.strip() or self.stdout.strip())[-_STDERR_TAIL_CHARS:]
        head = f"Command failed ({self.returncode}): {' '.join(self.command)}"
        if self.kind == "timeout":
            budget = f" after {self.timeout:g}s" if self.timeout is not None else ""
            head = f"Command timed out{budget}: {' '.join(self.command)}"
        return f"{head}\n{details}" if details else head


class ProcessRunner(Protocol):
    """Protocol for running external commands (injectable for tests)."""

    def run(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[str, ProcessError]: ...


class SubprocessRunner:
    """Production runner backed by ``run``."""

    def run(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[str, ProcessError]:
        return run(cmd, cwd, env, timeout=timeout, cancel=cancel)


def _kill_tree(proc: subprocess.Popen[bytes]) -> None:
    """Kill the process and every child sharing its process group."""
    if proc.poll() is not None:
        return
    try:
        if _POSIX:
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass
    try:
        proc.wait(timeout=_KILL_WAIT_SECONDS)
    except subprocess.TimeoutExpired:
        pass


def _read(handle: IO[bytes]) -> str:
    handle.seek(0)
    return handle.read().decode("utf-8", errors="replace")


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
) -> Result[str, ProcessError]:
    """Execute a command and return stdout or error.

    Args:
        cmd: Command and arguments to execute.
        cwd: Working directory for the command.
        env: Environment variables (uses current env if None).
        timeout: Maximum seconds to wait (None for no limit).
        cancel: Token polled while the command runs.

    Returns:
        Ok(stdout) on success, Err(ProcessError) on failure.

    Raises:
        OperationCancelled: ``cancel`` fired; the process tree was killed.
        KeyboardInterrupt: Interrupted while waiting; the process tree was killed.
    """
    command = tuple(cmd)
    if cancel is not None:
        cancel.raise_if_cancelled()

    with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=err,
                start_new_session=_POSIX,
            )
        except FileNotFoundError as e:
            return Err(ProcessError(command, -1, "", str(e), kind="not_found"))
        except OSError as e:
            return Err(ProcessError(command, -1, "", str(e), kind="start_failed"))

        deadline = time.monotonic() + timeout if timeout is not None else None
        try:
            while proc.poll() is None:
                if cancel is not None and cancel.cancelled:
                    _kill_tree(proc)
                    cancel.raise_if_cancelled()
                if deadline is not None and time.monotonic() >= deadline:
                    _kill_tree(proc)
                    return Err(
                        ProcessError(
                            command,
                            -1,
                            _read(out),
                            _read(err) or f"Command timed out after {timeout:g}s",
                            kind="timeout",
                            timeout=timeout,
                        )
                    )
                time.sleep(_POLL_INTERVAL_SECONDS)
        except BaseException:
            _kill_tree(proc)
            raise

        stdout = _read(out)
        stderr = _read(err)

    if proc.returncode != 0:
        return Err(ProcessError(command, proc.returncode, stdout, stderr))

    return Ok(stdout)
