from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from spmx.core.config import DEFAULT_CONFIG_FILENAME, Config, load_config
from spmx.core.errors import ErrorCode
from spmx.core.result import Err
from spmx.output.console import ConsoleProtocol, RichConsole


@dataclass(frozen=True, slots=True)
class CLIContext:
    config: Config
    console: ConsoleProtocol


def build_context(config_path: Path | None = None) -> CLIContext:
    """Console plus configuration (``--config``, else ``./spmx.toml``, else defaults)."""
    console = RichConsole()

    path = config_path
    if path is None:
        default = Path.cwd() / DEFAULT_CONFIG_FILENAME
        path = default if default.is_file() else None

    config = Config()
    if path is not None:
        result = load_config(path.expanduser())
        if isinstance(result, Err):
            console.error(result.error.message)
            raise typer.Exit(code=int(ErrorCode.FAILURE))
        config = result.value

    return CLIContext(config=config, console=console)
