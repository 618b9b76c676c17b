"""End-to-end pipeline: prepare sources, build, export.

Usage:
    orchestrator = Orchestrator(SubprocessRunner(), RealHttpClient(), events=sink)
    match orchestrator.run(request, cancel=token):
        case Ok(export):
            print(export.manifest_path)
        case Err(error):
            print(error.message)
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from spmx.core.config import Config
from spmx.core.errors import ResolveError
from spmx.core.models import ExportResult, FrameworkBuildResult, SourceMetadata
from spmx.core.result import Err, Result
from spmx.core.workspace import TemporaryWorkspace
from spmx.output.events import NullEventSink
from spmx.platform.cancel import raise_if_cancelled
from spmx.platform.paths import normalize_and_validate_output_path
from spmx.tools.github import GitHubReleaseResolver, token_from_env

from .exporter import DependencyExporter
from .framework_build import FrameworkBuilder
from .source import SourcePreparation, SourcePreparer
from .toolchain import Toolchain

if TYPE_CHECKING:
    from spmx.core.request import ResolveRequest
    from spmx.output.events import EventSink
    from spmx.platform.cancel import CancelToken
    from spmx.platform.process import ProcessRunner
    from spmx.tools.http import HttpClient

__all__ = ["Orchestrator"]


class Orchestrator:
    """Runs one resolve request inside a temporary workspace."""

    def __init__(
        self,
        runner: ProcessRunner,
        http: HttpClient,
        *,
        events: EventSink | None = None,
        config: Config | None = None,
        token: str | None = None,
        workspace_base: Path | None = None,
    ) -> None:
        self._events: EventSink = events or NullEventSink()
        self._config = config or Config()
        self._workspace_base = workspace_base

        timeouts = self._config.timeouts
        releases = GitHubReleaseResolver(
            http,
            token=token if token is not None else token_from_env(self._config.http.token_env),
            events=self._events,
        )
        self._source = SourcePreparer(runner, releases, events=self._events, timeouts=timeouts)
        self._toolchain = Toolchain(runner, timeouts)
        self._builder = FrameworkBuilder(runner, events=self._events, timeouts=timeouts)
        self._exporter = DependencyExporter(events=self._events)

    def run(
        self, request: ResolveRequest, *, cancel: CancelToken | None = None
    ) -> Result[ExportResult, ResolveError]:
        """Resolve ``request`` into an export directory.

        The workspace is removed on every exit path (including cancellation)
        unless the request asks to keep it.

        Raises:
            OperationCancelled: If ``cancel`` fires.
        """
        # Fail before any clone or build when the destination is unusable.
        output = normalize_and_validate_output_path(request.output_path)
        if isinstance(output, Err):
            return output

        with TemporaryWorkspace.create(
            keep=request.keep_temporary_workspace, base_dir=self._workspace_base
        ) as workspace:
            self._events.info(f"Temporary workspace: {workspace.root}")
            result = self._run_in(request, workspace, cancel)
            if request.keep_temporary_workspace:
                self._events.info(f"Kept temporary workspace: {workspace.root}")
            return result

    def _run_in(
        self,
        request: ResolveRequest,
        workspace: TemporaryWorkspace,
        cancel: CancelToken | None,
    ) -> Result[ExportResult, ResolveError]:
        prepared = self._source.prepare(request, workspace, cancel=cancel)
        if isinstance(prepared, Err):
            return prepared
        source = prepared.value

        if source.prebuilt_artifacts_found:
            self._events.info("Using prebuilt XCFramework artifacts from GitHub Releases.")
            return self._exporter.export(
                request.output_path,
                workspace.scratch_dir,
                FrameworkBuildResult(),
                source=self._metadata(request, source),
            )

        raise_if_cancelled(cancel)
        package_root = source.package_root
        versions = self._toolchain.verify_prerequisites(package_root, cancel=cancel)
        if isinstance(versions, Err):
            return versions

        swift_version = versions.value.get("swift", "")
        warning = self._toolchain.check_tools_version(package_root, swift_version)
        if warning:
            self._events.warning(warning)

        self._events.info("Resolving package dependencies...")
        resolved = self._toolchain.resolve_dependencies(
            package_root, workspace.scratch_dir, cancel=cancel
        )
        if isinstance(resolved, Err):
            return resolved

        self._events.info("Building XCFrameworks for buildable library products...")
        built = self._builder.build(package_root, workspace.scratch_dir, cancel=cancel)
        if isinstance(built, Err):
            return built
        for failure in built.value.failures:
            self._events.warning(f"[{failure.name}] {failure.reason}")

        raise_if_cancelled(cancel)
        return self._exporter.export(
            request.output_path,
            workspace.scratch_dir,
            built.value,
            source=self._metadata(request, source),
            package_root=package_root,
        )

    def _metadata(
        self, request: ResolveRequest, source: SourcePreparation
    ) -> SourceMetadata | None:
        if not request.is_remote:
            return None
        return SourceMetadata(
            url=request.package_url,
            version=request.tag,
            branch=request.branch,
            revision=request.revision or source.revision,
        )
