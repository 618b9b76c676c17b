"""GitHub release asset lookup.

Given a package URL, find the matching GitHub release (latest, or by tag),
pick its archive assets, and download them. Lookup is best-effort: anything
short of a complete download set makes the caller fall back to a source
build, and ``ReleaseLookup.status`` says why.
"""

from __future__ import annotations

import os
import urllib.parse
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from spmx.core.result import Err
from spmx.core.structured import as_str_dict, get_list, get_str
from spmx.output.events import NullEventSink
from spmx.platform.paths import sanitize_file_name

from .archive import is_supported_archive

if TYPE_CHECKING:
    from spmx.output.events import EventSink
    from spmx.platform.cancel import CancelToken

    from .http import HttpClient

__all__ = [
    "GITHUB_API_BASE",
    "GitHubReleaseResolver",
    "ReleaseAsset",
    "ReleaseLookup",
    "ReleaseLookupStatus",
    "parse_github_repository",
    "token_from_env",
]

GITHUB_API_BASE = "https://api.github.com"

_GITHUB_HOSTS = frozenset({"github.com", "www.github.com"})
_SSH_PREFIX = "git@github.com:"
_SOURCE_CODE_ASSETS = frozenset({"source code (zip)", "source code (tar.gz)"})

ReleaseLookupStatus = Literal[
    "downloaded",
    "no_release",
    "no_assets",
    "unsupported_url",
    "api_error",
    "download_failed",
]


@dataclass(frozen=True, slots=True)
class ReleaseAsset:
    name: str
    url: str


@dataclass(frozen=True, slots=True)
class ReleaseLookup:
    """Outcome of a release lookup.

    Attributes:
        status: Why the lookup ended. Only ``downloaded`` carries assets.
        assets: Downloaded archive paths (empty unless ``downloaded``).
        tag: Tag of the release that was found, if any.
        failed_assets: Asset names that failed to download.
        message: Human-readable summary for logs.
    """

    status: ReleaseLookupStatus
    assets: tuple[Path, ...] = ()
    tag: str | None = None
    failed_assets: tuple[str, ...] = ()
    message: str = ""

    @property
    def found_assets(self) -> bool:
        return self.status == "downloaded" and bool(self.assets)


def _trim_git_suffix(repo: str) -> str:
    return repo[:-4] if repo.lower().endswith(".git") else repo


def parse_github_repository(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from an HTTPS or SSH GitHub URL.

    Returns None for anything that is not a github.com repository URL.
    """
    url = url.strip()
    if url.lower().startswith(_SSH_PREFIX):
        path = url[len(_SSH_PREFIX) :]
    else:
        parsed = urllib.parse.urlsplit(url)
        if parsed.scheme.lower() not in ("https", "http", "ssh", "git"):
            return None
        if (parsed.hostname or "").lower() not in _GITHUB_HOSTS:
            return None
        path = parsed.path

    segments = [s for s in path.split("/") if s]
    if len(segments) < 2:
        return None
    owner, repo = segments[0], _trim_git_suffix(segments[1])
    if not owner or not repo:
        return None
    return owner, repo


def token_from_env(env_name: str = "GITHUB_TOKEN") -> str | None:
    """Read the API token from ``env_name`` (falling back to ``GH_TOKEN``)."""
    for name in (env_name, "GH_TOKEN"):
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


def _filter_assets(release: dict[str, object]) -> list[ReleaseAsset]:
    assets: list[ReleaseAsset] = []
    for item in get_list(release, "assets") or []:
        entry = as_str_dict(item)
        if entry is None:
            continue
        name = get_str(entry, "name")
        url = get_str(entry, "browser_download_url")
        if not name or not url:
            continue
        if name.lower() in _SOURCE_CODE_ASSETS or not is_supported_archive(name):
            continue
        assets.append(ReleaseAsset(name=name, url=url))
    return assets


def _unique_file(directory: Path, name: str) -> Path:
    candidate = directory / name
    stem, dot, ext = name.partition(".")
    n = 2
    while candidate.exists():
        candidate = directory / f"{stem}-{n}{dot}{ext}"
        n += 1
    return candidate


class GitHubReleaseResolver:
    """Downloads release archives for a GitHub-hosted package.

    Usage:
        resolver = GitHubReleaseResolver(RealHttpClient(), token=token_from_env())
        lookup = resolver.download_release_assets(url, "1.2.0", downloads_dir)
        if lookup.found_assets:
            ...
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        token: str | None = None,
        events: EventSink | None = None,
        api_base: str = GITHUB_API_BASE,
    ) -> None:
        self._http = http
        self._token = token
        self._events: EventSink = events or NullEventSink()
        self._api_base = api_base.rstrip("/")

    def release_url(self, owner: str, repo: str, tag: str | None) -> str:
        base = f"{self._api_base}/repos/{owner}/{repo}/releases"
        if tag:
            return f"{base}/tags/{urllib.parse.quote(tag, safe='')}"
        return f"{base}/latest"

    def api_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def download_release_assets(
        self,
        package_url: str,
        tag: str | None,
        download_dir: Path,
        *,
        cancel: CancelToken | None = None,
    ) -> ReleaseLookup:
        """Download every archive asset of the matching release.

        All-or-nothing: if any asset fails to download, the downloaded files
        are discarded and the lookup reports ``download_failed``.

        Raises:
            OperationCancelled: ``cancel`` fired during a download.
        """
        parsed = parse_github_repository(package_url)
        if parsed is None:
            return ReleaseLookup("unsupported_url", message="Not a GitHub repository URL.")
        owner, repo = parsed

        mode = f"tag '{tag}'" if tag else "latest release"
        self._events.info(f"Checking GitHub release assets for {owner}/{repo} ({mode})...")

        response = self._http.get_json(self.release_url(owner, repo, tag), self.api_headers())
        if isinstance(response, Err):
            if response.error.is_not_found:
                self._events.info("No release found.")
                return ReleaseLookup("no_release", message="No release found.")
            self._events.warning(f"GitHub API request failed: {response.error}")
            return ReleaseLookup("api_error", message=str(response.error))

        release = response.value
        release_tag = get_str(release, "tag_name")
        html_url = get_str(release, "html_url")
        if html_url:
            self._events.info(f"Resolved GitHub release page: {html_url}")

        assets = _filter_assets(release)
        if not assets:
            self._events.info("No suitable binary assets found in release.")
            return ReleaseLookup("no_assets", tag=release_tag, message="No archive assets.")

        download_dir.mkdir(parents=True, exist_ok=True)
        downloaded: list[Path] = []
        failed: list[str] = []
        for asset in assets:
            dest = _unique_file(
                download_dir, sanitize_file_name(asset.name, fallback=uuid.uuid4().hex)
            )
            self._events.info(f"Downloading {asset.name}...")
            result = self._http.download(asset.url, dest, cancel=cancel)
            if isinstance(result, Err):
                failed.append(asset.name)
                self._events.warning(
                    f"Failed to download release asset '{asset.name}': {result.error}"
                )
                dest.unlink(missing_ok=True)
                continue
            downloaded.append(result.value)

        if failed:
            for path in downloaded:
                path.unlink(missing_ok=True)
            message = (
                "One or more release assets failed to download "
                f"({', '.join(failed)}). Falling back to source build."
            )
            self._events.warning(message)
            return ReleaseLookup(
                "download_failed",
                tag=release_tag,
                failed_assets=tuple(failed),
                message=message,
            )

        return ReleaseLookup(
            "downloaded",
            assets=tuple(downloaded),
            tag=release_tag,
            message=f"Downloaded {len(downloaded)} release asset(s).",
        )
