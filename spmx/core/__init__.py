"""Core domain types and logic."""

from .config import Config, Timeouts, load_config
from .errors import ErrorCode, ResolveError
from .request import ResolveRequest, SourceKind
from .result import Err, Ok, Result
from .workspace import TemporaryWorkspace

__all__ = [
    # config
    "Config",
    "Timeouts",
    "load_config",
    # errors
    "ErrorCode",
    "ResolveError",
    # request
    "ResolveRequest",
    "SourceKind",
    # result
    "Err",
    "Ok",
    "Result",
    # workspace
    "TemporaryWorkspace",
]
