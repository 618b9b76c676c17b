"""Git repository operations needed to fetch package sources.

Usage:
    match Repository.clone(url, dest, runner=runner, ref="1.2.0", timeout=1800):
        case Ok(repo):
            print(repo.head_revision())
        case Err(e):
            print(f"Clone failed: {e.message}")
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from spmx.core.result import Err, Ok, Result

if TYPE_CHECKING:
    from spmx.platform.cancel import CancelToken
    from spmx.platform.process import ProcessError, ProcessRunner

__all__ = ["GitError", "Repository", "clone_args", "checkout_args"]

_GIT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git subcommand that failed (``clone``, ``checkout``)
        message: Error message (stderr of git, or a start failure)
        returncode: Process return code (-1 if git did not complete)
        timed_out: True when the operation exceeded its budget
        missing: True when git itself could not be started
    """

    command: str
    message: str
    returncode: int = 1
    timed_out: bool = False
    missing: bool = False

    @classmethod
    def from_process(cls, command: str, error: ProcessError) -> GitError:
        return cls(
            command=command,
            message=error.describe(),
            returncode=error.returncode,
            timed_out=error.timed_out,
            missing=error.kind in ("not_found", "start_failed"),
        )


def clone_args(
    url: str, dest: Path, *, ref: str | None = None, revision: str | None = None
) -> list[str]:
    """Arguments for ``git clone`` (without the ``git`` executable).

    Without a revision the clone is shallow and optionally pinned to a tag or
    branch. A specific revision needs full history, so the clone is not
    shallow and a detached checkout follows.
    """
    args = [
        "clone",
        "--no-template",
        "--config",
        "core.fsmonitor=false",
        "--filter=blob:none",
        "--single-branch",
    ]
    if revision is None:
        args += ["--depth", "1"]
        if ref:
            args += ["--branch", ref]
    args += ["--", url, str(dest)]
    return args


def checkout_args(revision: str) -> list[str]:
    return ["checkout", "--detach", revision]


def _git_env() -> dict[str, str]:
    # Never block on a credential prompt in a non-interactive run.
    return {**os.environ, "GIT_TERMINAL_PROMPT": "0"}


class Repository:
    """A cloned package repository.

    Attributes:
        path: Path to the repository root
    """

    def __init__(self, path: Path, runner: ProcessRunner) -> None:
        self.path = path
        self._runner = runner

    @classmethod
    def clone(
        cls,
        url: str,
        dest: Path,
        *,
        runner: ProcessRunner,
        ref: str | None = None,
        revision: str | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[Repository, GitError]:
        """Clone ``url`` into ``dest``.

        Returns:
            Ok(Repository) on success, Err(GitError) on failure or timeout.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        result = runner.run(
            ["git", *clone_args(url, dest, ref=ref, revision=revision)],
            cwd=dest.parent,
            env=_git_env(),
            timeout=timeout,
            cancel=cancel,
        )
        if isinstance(result, Err):
            return Err(GitError.from_process("clone", result.error))
        return Ok(cls(dest, runner))

    def checkout_detached(
        self,
        revision: str,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[None, GitError]:
        result = self._runner.run(
            ["git", *checkout_args(revision)],
            cwd=self.path,
            env=_git_env(),
            timeout=timeout,
            cancel=cancel,
        )
        if isinstance(result, Err):
            return Err(GitError.from_process("checkout", result.error))
        return Ok(None)

    def head_revision(self, *, cancel: CancelToken | None = None) -> str | None:
        """Commit hash of HEAD, or None if it cannot be determined."""
        result = self._runner.run(
            ["git", "rev-parse", "HEAD"],
            cwd=self.path,
            timeout=_GIT_TIMEOUT_SECONDS,
            cancel=cancel,
        )
        match result:
            case Ok(stdout):
                return stdout.strip() or None
            case Err(_):
                return None
