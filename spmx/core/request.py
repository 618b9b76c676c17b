"""Resolve request: the validated input of one pipeline run."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import ResolveError
from .result import Err, Ok, Result

__all__ = ["SourceKind", "ResolveRequest", "validate_request"]


class SourceKind(Enum):
    LOCAL_PATH = "local-path"
    REMOTE_URL = "remote-url"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _absolute(value: str) -> Path:
    return Path(os.path.abspath(os.path.expanduser(value)))


def validate_request(
    *,
    package_path: str | None,
    package_url: str | None,
    tag: str | None,
    branch: str | None,
    revision: str | None,
    output_path: str | None,
    disable_release_asset_lookup: bool = False,
) -> list[str]:
    """Validate raw request values.

    Returns:
        Every problem found, one message per entry (empty when valid).
    """
    errors: list[str] = []
    path = _clean(package_path)
    url = _clean(package_url)
    refs = {"--tag": _clean(tag), "--branch": _clean(branch), "--revision": _clean(revision)}
    selected = [name for name, value in refs.items() if value is not None]

    if (path is None) == (url is None):
        errors.append("Provide exactly one of --package-path or --package-url.")

    if _clean(output_path) is None:
        errors.append("Option --output is required.")

    if url is None and selected:
        errors.append("--tag, --branch, and --revision are only valid with --package-url.")

    if url is None and disable_release_asset_lookup:
        errors.append("--disable-release-asset-lookup is only valid with --package-url.")

    if url is not None and url.startswith("-"):
        errors.append("--package-url cannot start with '-'.")

    if len(selected) > 1:
        errors.append("Use only one of --tag, --branch, or --revision.")

    # Values are passed to git as arguments; a leading dash would read as an option.
    for name in selected:
        value = refs[name]
        if value is not None and value.startswith("-"):
            errors.append(f"{name} cannot start with '-'.")

    return errors


@dataclass(frozen=True, slots=True)
class ResolveRequest:
    """Immutable description of what to export and where.

    Exactly one of ``package_path`` / ``package_url`` is set, matching
    ``source_kind``. Ref selectors only appear with a remote URL, and at most
    one of them is set.
    """

    source_kind: SourceKind
    package_path: Path | None
    package_url: str | None
    tag: str | None
    branch: str | None
    revision: str | None
    output_path: Path
    keep_temporary_workspace: bool = False
    disable_release_asset_lookup: bool = False

    @classmethod
    def create(
        cls,
        *,
        package_path: str | None = None,
        package_url: str | None = None,
        tag: str | None = None,
        branch: str | None = None,
        revision: str | None = None,
        output_path: str | None = None,
        keep_temporary_workspace: bool = False,
        disable_release_asset_lookup: bool = False,
    ) -> Result[ResolveRequest, ResolveError]:
        """Validate raw values and build a request.

        Returns:
            Ok(ResolveRequest), or Err with kind ``invalid_request`` whose
            message lists every validation problem on its own line.
        """
        errors = validate_request(
            package_path=package_path,
            package_url=package_url,
            tag=tag,
            branch=branch,
            revision=revision,
            output_path=output_path,
            disable_release_asset_lookup=disable_release_asset_lookup,
        )
        if errors:
            return Err(ResolveError("invalid_request", "\n".join(errors)))

        path = _clean(package_path)
        output = _clean(output_path)
        assert output is not None

        return Ok(
            cls(
                source_kind=SourceKind.LOCAL_PATH if path is not None else SourceKind.REMOTE_URL,
                package_path=_absolute(path) if path is not None else None,
                package_url=_clean(package_url) if path is None else None,
                tag=_clean(tag),
                branch=_clean(branch),
                revision=_clean(revision),
                output_path=_absolute(output),
                keep_temporary_workspace=keep_temporary_workspace,
                disable_release_asset_lookup=disable_release_asset_lookup,
            )
        )

    @property
    def is_remote(self) -> bool:
        return self.source_kind is SourceKind.REMOTE_URL

    @property
    def ref(self) -> str | None:
        """The tag or branch to pin a shallow clone to (revision excluded)."""
        return self.tag or self.branch
