from __future__ import annotations

import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

import typer

from spmx import __version__
from spmx.cli.context import CLIContext, build_context
from spmx.core.errors import ErrorCode
from spmx.core.request import ResolveRequest
from spmx.core.result import Err, Ok
from spmx.output.errors import print_resolve_error, resolve_error_exit_code
from spmx.output.events import ConsoleEventSink
from spmx.platform.cancel import CancelToken, OperationCancelled
from spmx.platform.process import SubprocessRunner
from spmx.services.orchestrator import Orchestrator
from spmx.tools.http import RealHttpClient

MACOS_ONLY_MESSAGE = "spmx requires macOS (xcodebuild is unavailable on this platform)."


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@contextmanager
def _cancel_on_sigint(token: CancelToken) -> Iterator[None]:
    """Turn the first Ctrl+C into a cancellation request; the runner kills children."""

    def handler(signum: int, frame: FrameType | None) -> None:
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def build_orchestrator(ctx: CLIContext) -> Orchestrator:
    http = ctx.config.http
    return Orchestrator(
        SubprocessRunner(),
        RealHttpClient(timeout=http.timeout, user_agent=http.user_agent),
        events=ConsoleEventSink(ctx.console),
        config=ctx.config,
    )


@app.command()
def resolve(
    package_path: str | None = typer.Option(
        None,
        "--package-path",
        help="Path to a local Swift package directory or Package.swift file.",
        show_default=False,
    ),
    package_url: str | None = typer.Option(
        None,
        "--package-url",
        help="Remote git URL of the Swift package to clone and resolve.",
        show_default=False,
    ),
    tag: str | None = typer.Option(
        None, "--tag", help="Tag to check out (--package-url).", show_default=False
    ),
    branch: str | None = typer.Option(
        None, "--branch", help="Branch to check out (--package-url).", show_default=False
    ),
    revision: str | None = typer.Option(
        None, "--revision", help="Commit SHA to check out (--package-url).", show_default=False
    ),
    output: str | None = typer.Option(
        None,
        "--output",
        help="Output folder where generated XCFrameworks are exported.",
        show_default=False,
    ),
    keep_temporary_workspace: bool = typer.Option(
        False,
        "--keep-temporary-workspace",
        help="Keep the temporary working directory after execution for debugging.",
    ),
    disable_release_asset_lookup: bool = typer.Option(
        False,
        "--disable-release-asset-lookup",
        help="Do not look for prebuilt XCFrameworks in GitHub Releases.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Config file (default: ./spmx.toml when present).",
        show_default=False,
    ),
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
) -> None:
    """Build Swift package library products into XCFrameworks."""
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=int(ErrorCode.OK))

    ctx = build_context(config)

    request = ResolveRequest.create(
        package_path=package_path,
        package_url=package_url,
        tag=tag,
        branch=branch,
        revision=revision,
        output_path=output,
        keep_temporary_workspace=keep_temporary_workspace,
        disable_release_asset_lookup=disable_release_asset_lookup,
    )
    if isinstance(request, Err):
        print_resolve_error(request.error, ctx.console)
        raise typer.Exit(code=resolve_error_exit_code(request.error))

    if sys.platform != "darwin":
        ctx.console.error(MACOS_ONLY_MESSAGE)
        raise typer.Exit(code=int(ErrorCode.FAILURE))

    token = CancelToken()
    orchestrator = build_orchestrator(ctx)
    try:
        with _cancel_on_sigint(token):
            result = orchestrator.run(request.value, cancel=token)
    except (OperationCancelled, KeyboardInterrupt):
        ctx.console.warning("Operation cancelled.")
        raise typer.Exit(code=int(ErrorCode.CANCELLED))

    match result:
        case Ok(export):
            count = export.exported_count
            ctx.console.success(
                f"Exported {count} XCFramework artifact(s) to '{export.output_path}'."
            )
            ctx.console.print(f"Manifest: {export.manifest_path}")
        case Err(error):
            print_resolve_error(error, ctx.console)
            raise typer.Exit(code=resolve_error_exit_code(error))


def main() -> None:
    app()
