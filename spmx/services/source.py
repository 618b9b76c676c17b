"""Source preparation.

Turns a request into a package root the build engine can work on:
- a local package directory is validated in place,
- a remote package first gets a GitHub release lookup; archives containing
  XCFrameworks are staged under ``scratch/artifacts/prebuilt`` and the clone
  is skipped entirely,
- otherwise the repository is cloned (shallow, or full + detached checkout
  when a revision is requested).
"""

from __future__ import annotations

import urllib.parse
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from spmx.core.config import Timeouts, format_duration
from spmx.core.errors import ResolveError
from spmx.core.request import ResolveRequest, SourceKind
from spmx.core.result import Err, Ok, Result
from spmx.git.repository import GitError, Repository
from spmx.output.events import NullEventSink
from spmx.platform.files import copy_tree, unique_child_path
from spmx.platform.paths import sanitize_file_name
from spmx.tools.archive import ArchiveExtractor, archive_stem

if TYPE_CHECKING:
    from spmx.core.workspace import TemporaryWorkspace
    from spmx.output.events import EventSink
    from spmx.platform.cancel import CancelToken
    from spmx.platform.process import ProcessRunner
    from spmx.tools.github import GitHubReleaseResolver, ReleaseLookup

__all__ = [
    "MANIFEST_FILENAME",
    "SourcePreparation",
    "SourcePreparer",
    "clone_directory_name",
    "find_xcframeworks",
]

MANIFEST_FILENAME = "Package.swift"
_XCFRAMEWORK_SUFFIX = ".xcframework"


@dataclass(frozen=True, slots=True)
class SourcePreparation:
    """Prepared sources.

    Attributes:
        package_root: Directory holding Package.swift (for the short-circuit,
            the workspace package directory, which stays empty).
        prebuilt_artifacts_found: Release payloads were staged; skip the build.
        release: Outcome of the release lookup, when one ran.
        revision: Commit checked out by the clone, when known.
    """

    package_root: Path
    prebuilt_artifacts_found: bool = False
    release: ReleaseLookup | None = None
    revision: str | None = None


def clone_directory_name(package_url: str) -> str:
    """Directory name for a clone: the last URL path segment without ``.git``."""
    url = package_url.strip()
    if not url:
        return "package"

    path = url
    if url.lower().startswith("git@"):
        _, _, path = url.partition(":")
    else:
        parsed = urllib.parse.urlsplit(url)
        if parsed.scheme and parsed.netloc:
            path = parsed.path

    segments = [s.strip() for s in path.split("/") if s.strip()]
    last = segments[-1] if segments else ""
    if last.lower().endswith(".git"):
        last = last[:-4]
    return sanitize_file_name(last, fallback="package")


def _is_bundle_dir(path: Path) -> bool:
    return path.is_dir() and path.name.lower().endswith(_XCFRAMEWORK_SUFFIX)


def find_xcframeworks(root: Path) -> list[Path]:
    """XCFramework directories anywhere under ``root`` (outermost only), sorted."""
    if not root.is_dir():
        return []
    found: list[Path] = []
    for path in sorted(root.rglob(f"*{_XCFRAMEWORK_SUFFIX}")):
        if not _is_bundle_dir(path) or path.is_symlink():
            continue
        if any(path.is_relative_to(outer) for outer in found):
            continue
        found.append(path)
    return found


def _manifest_missing(root: Path) -> Err[ResolveError]:
    return Err(
        ResolveError(
            "manifest_not_found",
            f"{MANIFEST_FILENAME} not found in: {root}",
            hint="Point --package-path at a Swift package directory.",
        )
    )


class SourcePreparer:
    """Prepares package sources for one run."""

    def __init__(
        self,
        runner: ProcessRunner,
        releases: GitHubReleaseResolver,
        *,
        extractor: ArchiveExtractor | None = None,
        events: EventSink | None = None,
        timeouts: Timeouts | None = None,
    ) -> None:
        self._runner = runner
        self._releases = releases
        self._extractor = extractor or ArchiveExtractor()
        self._events: EventSink = events or NullEventSink()
        self._timeouts = timeouts or Timeouts()

    def prepare(
        self,
        request: ResolveRequest,
        workspace: TemporaryWorkspace,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[SourcePreparation, ResolveError]:
        match request.source_kind:
            case SourceKind.LOCAL_PATH:
                assert request.package_path is not None
                root = self.resolve_local_package(request.package_path)
                if isinstance(root, Err):
                    return root
                return Ok(SourcePreparation(package_root=root.value))
            case SourceKind.REMOTE_URL:
                return self._prepare_remote(request, workspace, cancel)

    def resolve_local_package(self, package_path: Path) -> Result[Path, ResolveError]:
        """Package directory for ``package_path`` (a directory or its Package.swift)."""
        path = package_path
        if path.is_file():
            if path.name != MANIFEST_FILENAME:
                return Err(
                    ResolveError(
                        "manifest_not_found",
                        f"--package-path file must be {MANIFEST_FILENAME}: {path}",
                    )
                )
            path = path.parent
        elif not path.is_dir():
            return Err(ResolveError("manifest_not_found", f"Package path does not exist: {path}"))

        if not (path / MANIFEST_FILENAME).is_file():
            return _manifest_missing(path)
        return Ok(path)

    def _prepare_remote(
        self,
        request: ResolveRequest,
        workspace: TemporaryWorkspace,
        cancel: CancelToken | None,
    ) -> Result[SourcePreparation, ResolveError]:
        url = request.package_url
        assert url is not None

        self._events.info(
            "Remote ref selection: "
            f"tag='{request.tag or '<none>'}', "
            f"branch='{request.branch or '<none>'}', "
            f"revision='{request.revision or '<none>'}'."
        )

        lookup: ReleaseLookup | None = None
        if not request.disable_release_asset_lookup:
            lookup = self._releases.download_release_assets(
                url,
                request.tag,
                workspace.release_assets_dir / "downloads",
                cancel=cancel,
            )
            if lookup.found_assets:
                staged = self._stage_release_assets(lookup.assets, workspace, cancel)
                if isinstance(staged, Err):
                    return staged
                if staged.value > 0:
                    return Ok(
                        SourcePreparation(
                            package_root=workspace.package_dir,
                            prebuilt_artifacts_found=True,
                            release=lookup,
                        )
                    )
                self._events.info(
                    "No XCFrameworks found in release assets. Falling back to source build."
                )

        destination = workspace.package_dir / clone_directory_name(url)
        cloned = Repository.clone(
            url,
            destination,
            runner=self._runner,
            ref=request.ref,
            revision=request.revision,
            timeout=self._timeouts.clone,
            cancel=cancel,
        )
        if isinstance(cloned, Err):
            return Err(self._git_failure(cloned.error, self._timeouts.clone))
        repo = cloned.value

        if request.revision:
            checked_out = repo.checkout_detached(
                request.revision, timeout=self._timeouts.checkout, cancel=cancel
            )
            if isinstance(checked_out, Err):
                return Err(self._git_failure(checked_out.error, self._timeouts.checkout))

        if not (destination / MANIFEST_FILENAME).is_file():
            return _manifest_missing(destination)

        return Ok(
            SourcePreparation(
                package_root=destination,
                release=lookup,
                revision=repo.head_revision(cancel=cancel) or request.revision,
            )
        )

    def _stage_release_assets(
        self,
        assets: tuple[Path, ...],
        workspace: TemporaryWorkspace,
        cancel: CancelToken | None,
    ) -> Result[int, ResolveError]:
        """Extract each asset and stage the ones that contain XCFrameworks.

        Returns:
            Ok(number of staged assets). Unsafe archive content is fatal;
            other extraction failures only skip the asset.
        """
        extracted_root = workspace.release_assets_dir / "extracted"
        staged_assets = 0
        staged_bundles = 0

        for asset in assets:
            stem = archive_stem(asset.name)
            extract_dir = extracted_root / sanitize_file_name(stem, "asset") / uuid.uuid4().hex
            extracted = self._extractor.extract(asset, extract_dir, cancel=cancel)
            if isinstance(extracted, Err):
                if extracted.error.is_safety_violation:
                    return extracted
                self._events.warning(
                    f"Failed to extract release asset '{asset.name}': {extracted.error.message}"
                )
                continue

            bundles = find_xcframeworks(extract_dir)
            if not bundles:
                continue

            # A stage directory named *.xcframework would be mistaken for a bundle.
            stage_name = stem
            if stage_name.lower().endswith(_XCFRAMEWORK_SUFFIX):
                stage_name = stage_name[: -len(_XCFRAMEWORK_SUFFIX)]
            workspace.prebuilt_dir.mkdir(parents=True, exist_ok=True)
            stage_dir = unique_child_path(
                workspace.prebuilt_dir,
                sanitize_file_name(stage_name, "asset"),
                keep_extension=False,
            )
            if isinstance(stage_dir, Err):
                return stage_dir
            copied = copy_tree(extract_dir, stage_dir.value)
            if isinstance(copied, Err):
                return copied

            staged_assets += 1
            staged_bundles += len(bundles)
            self._events.info(
                f"Release asset '{asset.name}' contained {len(bundles)} XCFramework(s); "
                f"staged as-is under '{stage_dir.value.name}'."
            )

        if staged_assets:
            self._events.info(
                f"Found {staged_bundles} prebuilt XCFramework artifact(s) "
                f"in {staged_assets} release asset(s)."
            )
        return Ok(staged_assets)

    def _git_failure(self, error: GitError, budget: float) -> ResolveError:
        if error.timed_out:
            return ResolveError(
                "timeout",
                f"Timed out running 'git {error.command}' after {format_duration(budget)}.",
                hint="Raise the budget in the [timeouts] section of spmx.toml.",
            )
        if error.missing:
            return ResolveError(
                "tool_missing",
                error.message,
                hint="Install git (xcode-select --install) and make sure it is on PATH.",
            )
        return ResolveError("command_failed", error.message)
