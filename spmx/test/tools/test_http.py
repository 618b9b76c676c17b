"""Tests for spmx.tools.http module."""

from __future__ import annotations

from pathlib import Path

import pytest

from spmx.core.result import Err, Ok
from spmx.platform.cancel import CancelToken, OperationCancelled
from spmx.tools.http import HttpClient, HttpError, MockHttpClient, RealHttpClient


class TestHttpError:
    """Test HttpError dataclass."""

    def test_str_with_status(self) -> None:
        error = HttpError(url="https://x/y", status=500, message="Server Error")
        assert str(error) == "HTTP 500: Server Error (https://x/y)"

    def test_str_network_error(self) -> None:
        error = HttpError(url="https://x/y", status=0, message="Connection refused")
        assert str(error) == "Connection refused (https://x/y)"

    def test_is_not_found(self) -> None:
        assert HttpError("u", 404, "Not Found").is_not_found
        assert not HttpError("u", 403, "Forbidden").is_not_found


class TestMockHttpClient:
    """Test MockHttpClient."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(MockHttpClient(), HttpClient)
        assert isinstance(RealHttpClient(), HttpClient)

    def test_get_json_configured(self) -> None:
        client = MockHttpClient()
        client.set_json("https://api/x", {"tag_name": "1.0.0"})

        result = client.get_json("https://api/x", {"Accept": "json"})

        assert result == Ok({"tag_name": "1.0.0"})
        assert client.calls[0].headers == {"Accept": "json"}

    def test_get_json_unknown_url_is_404(self) -> None:
        client = MockHttpClient()

        result = client.get_json("https://api/missing")

        assert isinstance(result, Err)
        assert result.error.is_not_found

    def test_get_json_configured_error(self) -> None:
        client = MockHttpClient()
        client.set_json("https://api/x", HttpError("https://api/x", 403, "rate limited"))

        result = client.get_json("https://api/x")

        assert isinstance(result, Err)
        assert result.error.status == 403

    def test_download_writes_content(self, tmp_path: Path) -> None:
        client = MockHttpClient()
        client.set_download("https://dl/a.zip", b"payload")
        seen: list[tuple[int, int]] = []

        result = client.download(
            "https://dl/a.zip",
            tmp_path / "d" / "a.zip",
            progress=lambda done, total: seen.append((done, total)),
        )

        assert result == Ok(tmp_path / "d" / "a.zip")
        assert (tmp_path / "d" / "a.zip").read_bytes() == b"payload"
        assert seen == [(7, 7)]
        assert client.urls("download") == ["https://dl/a.zip"]

    def test_download_unknown_url(self, tmp_path: Path) -> None:
        result = MockHttpClient().download("https://dl/none", tmp_path / "x")

        assert isinstance(result, Err)
        assert not (tmp_path / "x").exists()

    def test_download_cancelled(self, tmp_path: Path) -> None:
        client = MockHttpClient()
        client.set_download("https://dl/a.zip", b"x")
        token = CancelToken()
        token.cancel()

        with pytest.raises(OperationCancelled):
            client.download("https://dl/a.zip", tmp_path / "a.zip", cancel=token)


class TestRealHttpClient:
    def test_request_sets_user_agent_and_headers(self) -> None:
        client = RealHttpClient(user_agent="spmx-test")

        request = client._build_request("https://example.invalid/x", {"Accept": "a"})

        assert request.get_header("User-agent") == "spmx-test"
        assert request.get_header("Accept") == "a"

    def test_invalid_url_is_error(self) -> None:
        result = RealHttpClient().get_json("not a url")

        assert isinstance(result, Err)
        assert result.error.status == 0
