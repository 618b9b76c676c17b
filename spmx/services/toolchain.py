"""Toolchain checks and dependency resolution."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from spmx.core.config import Timeouts, format_duration
from spmx.core.errors import ResolveError
from spmx.core.result import Err, Ok, Result

if TYPE_CHECKING:
    from spmx.platform.cancel import CancelToken
    from spmx.platform.process import ProcessError, ProcessRunner

__all__ = [
    "REQUIRED_TOOLS",
    "RequiredTool",
    "Toolchain",
    "major_version",
    "tools_version_warning",
]


@dataclass(frozen=True, slots=True)
class RequiredTool:
    """An executable the pipeline cannot run without."""

    name: str
    version_args: tuple[str, ...]
    hint: str


REQUIRED_TOOLS: tuple[RequiredTool, ...] = (
    RequiredTool("swift", ("--version",), "Install Xcode or the Swift toolchain from swift.org."),
    RequiredTool(
        "git",
        ("--version",),
        "Install the Xcode command line tools: xcode-select --install",
    ),
    RequiredTool(
        "xcodebuild",
        ("-version",),
        "Install Xcode and run: sudo xcode-select -s /Applications/Xcode.app",
    ),
)

_TOOLS_VERSION_RE = re.compile(r"swift-tools-version\s*:\s*(\d+)", re.IGNORECASE)
_SWIFT_VERSION_RE = re.compile(r"Swift version\s+(\d+)", re.IGNORECASE)


def major_version(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    return int(match.group(1)) if match else None


def tools_version_warning(manifest_text: str, swift_version_output: str) -> str | None:
    """Warning when the installed Swift is older than the manifest requires.

    Args:
        manifest_text: Contents of Package.swift.
        swift_version_output: Output of ``swift --version``.

    Returns:
        The warning text, or None when compatible or undeterminable.
    """
    required = major_version(_TOOLS_VERSION_RE, manifest_text)
    installed = major_version(_SWIFT_VERSION_RE, swift_version_output)
    if required is None or installed is None or installed >= required:
        return None
    return (
        f"Package.swift declares swift-tools-version {required}, "
        f"but installed Swift major version is {installed}."
    )


def _tool_error(tool: RequiredTool, error: ProcessError, budget: float) -> ResolveError:
    if error.kind in ("not_found", "start_failed"):
        return ResolveError(
            "tool_missing", f"Required tool '{tool.name}' was not found on PATH.", hint=tool.hint
        )
    if error.timed_out:
        return ResolveError(
            "timeout",
            f"Timed out running '{tool.name} {' '.join(tool.version_args)}' "
            f"after {format_duration(budget)}.",
        )
    return ResolveError(
        "tool_missing",
        f"Required tool '{tool.name}' is not usable: {error.describe()}",
        hint=tool.hint,
    )


class Toolchain:
    """Thin wrapper over the swift/git/xcodebuild command lines."""

    def __init__(self, runner: ProcessRunner, timeouts: Timeouts | None = None) -> None:
        self._runner = runner
        self._timeouts = timeouts or Timeouts()

    def verify_prerequisites(
        self, cwd: Path, *, cancel: CancelToken | None = None
    ) -> Result[dict[str, str], ResolveError]:
        """Run every tool's version command.

        Returns:
            Ok(mapping of tool name to version output), or Err ``tool_missing``
            for the first tool that cannot be run.
        """
        versions: dict[str, str] = {}
        for tool in REQUIRED_TOOLS:
            result = self._runner.run(
                [tool.name, *tool.version_args],
                cwd=cwd,
                timeout=self._timeouts.tool_version,
                cancel=cancel,
            )
            match result:
                case Ok(stdout):
                    versions[tool.name] = stdout
                case Err(e):
                    return Err(_tool_error(tool, e, self._timeouts.tool_version))
        return Ok(versions)

    def check_tools_version(self, package_root: Path, swift_version_output: str) -> str | None:
        manifest = package_root / "Package.swift"
        try:
            text = manifest.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None
        return tools_version_warning(text, swift_version_output)

    def resolve_dependencies(
        self,
        package_root: Path,
        scratch_dir: Path,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[None, ResolveError]:
        """``swift package resolve`` into the workspace scratch directory."""
        scratch_dir.mkdir(parents=True, exist_ok=True)
        result = self._runner.run(
            [
                "swift",
                "package",
                "--package-path",
                str(package_root),
                "--scratch-path",
                str(scratch_dir),
                "resolve",
            ],
            cwd=package_root,
            timeout=self._timeouts.resolve,
            cancel=cancel,
        )
        if isinstance(result, Err):
            error = result.error
            if error.timed_out:
                return Err(
                    ResolveError(
                        "timeout",
                        "Timed out running 'swift package resolve' after "
                        f"{format_duration(self._timeouts.resolve)}.",
                    )
                )
            if error.kind in ("not_found", "start_failed"):
                return Err(
                    ResolveError("tool_missing", error.describe(), hint=REQUIRED_TOOLS[0].hint)
                )
            return Err(ResolveError("command_failed", error.describe()))
        return Ok(None)
