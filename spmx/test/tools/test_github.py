"""Tests for spmx.tools.github module."""

from __future__ import annotations

from pathlib import Path

import pytest

from spmx.output.events import RecordingEventSink
from spmx.tools.github import GitHubReleaseResolver, parse_github_repository, token_from_env
from spmx.tools.http import HttpError, MockHttpClient

API = "https://api.github.com/repos/acme/kit/releases"
URL = "https://github.com/acme/kit.git"


def _release(*names: str, tag: str = "1.2.0") -> dict[str, object]:
    return {
        "tag_name": tag,
        "html_url": f"https://github.com/acme/kit/releases/tag/{tag}",
        "assets": [
            {"name": name, "browser_download_url": f"https://dl.example/{name}"} for name in names
        ],
    }


class TestParseGithubRepository:
    """Test parse_github_repository."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/kit",
            "https://github.com/acme/kit.git",
            "https://www.github.com/acme/kit/",
            "git@github.com:acme/kit.git",
            "ssh://git@github.com/acme/kit.git",
        ],
    )
    def test_github_urls(self, url: str) -> None:
        assert parse_github_repository(url) == ("acme", "kit")

    @pytest.mark.parametrize(
        "url",
        [
            "https://gitlab.com/acme/kit",
            "https://github.com/acme",
            "file:///tmp/kit",
            "/local/path",
        ],
    )
    def test_non_github_urls(self, url: str) -> None:
        assert parse_github_repository(url) is None


class TestTokenFromEnv:
    def test_primary_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_TOKEN", "primary")
        monkeypatch.setenv("GH_TOKEN", "fallback")
        assert token_from_env() == "primary"

    def test_falls_back_to_gh_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.setenv("GH_TOKEN", "fallback")
        assert token_from_env() == "fallback"

    def test_none(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_TOKEN", "  ")
        monkeypatch.delenv("GH_TOKEN", raising=False)
        assert token_from_env("MY_TOKEN") is None


class TestGitHubReleaseResolver:
    """Test release lookups against a mock HTTP client."""

    def test_release_urls(self) -> None:
        resolver = GitHubReleaseResolver(MockHttpClient())

        assert resolver.release_url("acme", "kit", None) == f"{API}/latest"
        assert resolver.release_url("acme", "kit", "v1/beta") == f"{API}/tags/v1%2Fbeta"

    def test_token_sent_as_bearer(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        resolver = GitHubReleaseResolver(http, token="secret")

        resolver.download_release_assets(URL, None, tmp_path)

        assert http.calls[0].headers["Authorization"] == "Bearer secret"

    def test_no_token_no_authorization(self, tmp_path: Path) -> None:
        http = MockHttpClient()

        GitHubReleaseResolver(http).download_release_assets(URL, None, tmp_path)

        assert "Authorization" not in http.calls[0].headers

    def test_unsupported_url_makes_no_requests(self, tmp_path: Path) -> None:
        http = MockHttpClient()

        lookup = GitHubReleaseResolver(http).download_release_assets(
            "https://gitlab.com/acme/kit", None, tmp_path
        )

        assert lookup.status == "unsupported_url"
        assert http.calls == []

    def test_missing_release(self, tmp_path: Path) -> None:
        lookup = GitHubReleaseResolver(MockHttpClient()).download_release_assets(
            URL, "9.9.9", tmp_path
        )

        assert lookup.status == "no_release"
        assert not lookup.found_assets

    def test_api_error_warns(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json(f"{API}/latest", HttpError(f"{API}/latest", 403, "rate limit"))
        events = RecordingEventSink()

        lookup = GitHubReleaseResolver(http, events=events).download_release_assets(
            URL, None, tmp_path
        )

        assert lookup.status == "api_error"
        assert any("GitHub API request failed" in w for w in events.warnings)

    def test_source_code_and_non_archives_filtered(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json(
            f"{API}/latest", _release("Source code (zip)", "checksums.txt", "notes.md")
        )

        lookup = GitHubReleaseResolver(http).download_release_assets(URL, None, tmp_path)

        assert lookup.status == "no_assets"
        assert lookup.tag == "1.2.0"
        assert http.urls("download") == []

    def test_downloads_all_archives(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json(f"{API}/tags/1.2.0", _release("Kit.xcframework.zip", "Extra.tar.gz"))
        http.set_download("https://dl.example/Kit.xcframework.zip", b"zip")
        http.set_download("https://dl.example/Extra.tar.gz", b"tgz")

        lookup = GitHubReleaseResolver(http).download_release_assets(URL, "1.2.0", tmp_path)

        assert lookup.status == "downloaded"
        assert lookup.found_assets
        assert [p.name for p in lookup.assets] == ["Kit.xcframework.zip", "Extra.tar.gz"]
        assert (tmp_path / "Kit.xcframework.zip").read_bytes() == b"zip"

    def test_partial_download_discards_everything(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json(f"{API}/latest", _release("A.zip", "B.zip"))
        http.set_download("https://dl.example/A.zip", b"a")
        events = RecordingEventSink()

        lookup = GitHubReleaseResolver(http, events=events).download_release_assets(
            URL, None, tmp_path
        )

        assert lookup.status == "download_failed"
        assert lookup.failed_assets == ("B.zip",)
        assert lookup.assets == ()
        assert list(tmp_path.iterdir()) == []
        assert any("Falling back to source build" in w for w in events.warnings)

    def test_duplicate_asset_names_do_not_overwrite(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json(
            f"{API}/latest",
            {
                "tag_name": "1.0",
                "assets": [
                    {"name": "Kit.zip", "browser_download_url": "https://dl.example/one"},
                    {"name": "Kit.zip", "browser_download_url": "https://dl.example/two"},
                ],
            },
        )
        http.set_download("https://dl.example/one", b"1")
        http.set_download("https://dl.example/two", b"2")

        lookup = GitHubReleaseResolver(http).download_release_assets(URL, None, tmp_path)

        assert sorted(p.name for p in lookup.assets) == ["Kit-2.zip", "Kit.zip"]
