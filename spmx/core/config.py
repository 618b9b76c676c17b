"""Typed configuration loading and access.

Configuration is optional. A TOML file may override the per-operation
timeout budgets and HTTP settings:

    [timeouts]
    clone = 1800
    slice_build = 720

    [http]
    timeout = 30
    token_env = "GITHUB_TOKEN"
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from spmx import __version__

from .errors import ResolveError
from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_float, get_str, get_table

__all__ = [
    "Config",
    "HttpConfig",
    "Timeouts",
    "DEFAULT_CONFIG_FILENAME",
    "format_duration",
    "load_config",
    "load_config_or_default",
]

DEFAULT_CONFIG_FILENAME = "spmx.toml"

_MINUTE = 60.0


@dataclass(frozen=True, slots=True)
class Timeouts:
    """Independent budgets (seconds) for every guarded external call."""

    clone: float = 30 * _MINUTE
    checkout: float = 15 * _MINUTE
    resolve: float = 15 * _MINUTE
    dump_package: float = 2 * _MINUTE
    scheme_list: float = 5 * _MINUTE
    slice_build: float = 12 * _MINUTE
    artifact_discovery: float = 2 * _MINUTE
    create_xcframework: float = 5 * _MINUTE
    tool_version: float = 1 * _MINUTE

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Timeouts:
        defaults = cls()

        def pick(key: str, default: float) -> float:
            value = get_float(data, key)
            if value is None:
                return default
            if value <= 0:
                raise ValueError(f"timeouts.{key} must be positive")
            return value

        return cls(
            clone=pick("clone", defaults.clone),
            checkout=pick("checkout", defaults.checkout),
            resolve=pick("resolve", defaults.resolve),
            dump_package=pick("dump_package", defaults.dump_package),
            scheme_list=pick("scheme_list", defaults.scheme_list),
            slice_build=pick("slice_build", defaults.slice_build),
            artifact_discovery=pick("artifact_discovery", defaults.artifact_discovery),
            create_xcframework=pick("create_xcframework", defaults.create_xcframework),
            tool_version=pick("tool_version", defaults.tool_version),
        )


@dataclass(frozen=True, slots=True)
class HttpConfig:
    """Release API client settings."""

    timeout: float = 30.0
    user_agent: str = f"spmx/{__version__}"
    token_env: str = "GITHUB_TOKEN"


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    timeouts: Timeouts = field(default_factory=Timeouts)
    http: HttpConfig = field(default_factory=HttpConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        timeouts: StrDict = get_table(data, "timeouts") or {}
        http: StrDict = get_table(data, "http") or {}
        defaults = HttpConfig()
        timeout = get_float(http, "timeout")
        if timeout is not None and timeout <= 0:
            raise ValueError("http.timeout must be positive")

        return cls(
            timeouts=Timeouts.from_dict(timeouts),
            http=HttpConfig(
                timeout=defaults.timeout if timeout is None else timeout,
                user_agent=get_str(http, "user_agent") or defaults.user_agent,
                token_env=get_str(http, "token_env") or defaults.token_env,
            ),
        )


def _parse_toml(path: Path) -> Result[StrDict, ResolveError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError:
        return Err(ResolveError("invalid_config", f"Config file not found: {path}"))
    except PermissionError:
        return Err(ResolveError("invalid_config", f"Permission denied reading: {path}"))
    except tomllib.TOMLDecodeError as e:
        return Err(ResolveError("invalid_config", f"Invalid TOML syntax in {path}: {e}"))
    except UnicodeDecodeError as e:
        return Err(ResolveError("invalid_config", f"Error reading config {path}: {e}"))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ResolveError("invalid_config", f"Config root must be a TOML table: {path}"))
    return Ok(data)


def load_config(path: Path) -> Result[Config, ResolveError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        Ok(Config) on success, Err(ResolveError) with kind ``invalid_config``.
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ResolveError("invalid_config", f"Invalid config structure in {path}: {e}"))


def load_config_or_default(path: Path) -> Config:
    """Load config from file, or return the defaults if it cannot be read."""
    result = load_config(path)
    if isinstance(result, Ok):
        return result.value
    return Config()


def format_duration(seconds: float) -> str:
    """Human form of a timeout budget (``30 minutes``, ``45 seconds``)."""
    if seconds >= _MINUTE and seconds % _MINUTE == 0:
        minutes = int(seconds // _MINUTE)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds:g} seconds"
