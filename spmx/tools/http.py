"""HTTP client abstraction for release lookups and asset downloads.

This module provides:
- HttpClient: Protocol for HTTP operations (injectable for tests)
- RealHttpClient: Real implementation using urllib
- MockHttpClient: Mock implementation for testing
"""

from __future__ import annotations

import json
import ssl
import urllib.error
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, cast, runtime_checkable

from spmx import __version__
from spmx.core.result import Err, Ok, Result
from spmx.core.structured import as_str_dict
from spmx.platform.cancel import raise_if_cancelled

if TYPE_CHECKING:
    from collections.abc import Callable

    from spmx.platform.cancel import CancelToken

__all__ = [
    "HttpClient",
    "HttpCall",
    "RealHttpClient",
    "MockHttpClient",
    "HttpError",
]

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True, slots=True)
class HttpError:
    """HTTP error details.

    Attributes:
        url: The URL that failed
        status: HTTP status code (0 for network errors)
        message: Human-readable error message
    """

    url: str
    status: int
    message: str

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status}: {self.message} ({self.url})"
        return f"{self.message} ({self.url})"

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


@runtime_checkable
class HttpClient(Protocol):
    """Protocol for HTTP operations.

    This abstraction allows injecting mock clients for testing,
    avoiding real network calls in unit tests.
    """

    def get_json(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
    ) -> Result[dict[str, Any], HttpError]:
        """Fetch URL and parse the body as a JSON object.

        Args:
            url: URL to fetch
            headers: Extra request headers

        Returns:
            Ok with parsed JSON dict, or Err with HttpError
        """
        ...

    def download(
        self,
        url: str,
        dest: Path,
        *,
        headers: Mapping[str, str] | None = None,
        progress: Callable[[int, int], None] | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[Path, HttpError]:
        """Download URL to file.

        Args:
            url: URL to download
            dest: Destination path
            headers: Extra request headers
            progress: Optional callback(downloaded, total) for progress
            cancel: Checked between chunks

        Returns:
            Ok with dest path, or Err with HttpError
        """
        ...


class RealHttpClient:
    """Real HTTP client using urllib.

    Handles:
    - HTTPS with system certificates
    - JSON parsing
    - Chunked download with progress callback and cancellation
    - Timeout handling
    """

    def __init__(self, timeout: float = 30.0, user_agent: str = f"spmx/{__version__}") -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._ssl_context = ssl.create_default_context()

    def _build_request(self, url: str, headers: Mapping[str, str] | None) -> urllib.request.Request:
        merged = {"User-Agent": self.user_agent}
        if headers:
            merged.update(headers)
        return urllib.request.Request(url, headers=merged)

    def _request(self, url: str, headers: Mapping[str, str] | None) -> Result[bytes, HttpError]:
        try:
            with urllib.request.urlopen(
                self._build_request(url, headers),
                timeout=self.timeout,
                context=self._ssl_context,
            ) as response:
                return Ok(response.read())
        except urllib.error.HTTPError as e:
            return Err(HttpError(url=url, status=e.code, message=str(e.reason)))
        except urllib.error.URLError as e:
            return Err(HttpError(url=url, status=0, message=str(e.reason)))
        except TimeoutError:
            return Err(HttpError(url=url, status=0, message="Request timed out"))
        except ValueError as e:
            return Err(HttpError(url=url, status=0, message=str(e)))
        except OSError as e:
            return Err(HttpError(url=url, status=0, message=str(e)))

    def get_json(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
    ) -> Result[dict[str, Any], HttpError]:
        result = self._request(url, headers)
        if isinstance(result, Err):
            return result

        try:
            data_obj: object = json.loads(result.value.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return Err(HttpError(url=url, status=0, message=f"JSON parse error: {e}"))

        data = as_str_dict(data_obj)
        if data is None:
            return Err(HttpError(url=url, status=0, message="Expected JSON object"))
        return Ok(cast(dict[str, Any], data))

    def download(
        self,
        url: str,
        dest: Path,
        *,
        headers: Mapping[str, str] | None = None,
        progress: Callable[[int, int], None] | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[Path, HttpError]:
        try:
            with urllib.request.urlopen(
                self._build_request(url, headers),
                timeout=self.timeout,
                context=self._ssl_context,
            ) as response:
                total = int(response.headers.get("Content-Length", 0) or 0)
                downloaded = 0

                dest.parent.mkdir(parents=True, exist_ok=True)
                with open(dest, "wb") as f:
                    while True:
                        raise_if_cancelled(cancel)
                        chunk = response.read(_CHUNK_SIZE)
                        if not chunk:
                            break
                        f.write(chunk)
                        downloaded += len(chunk)
                        if progress:
                            progress(downloaded, total)

                return Ok(dest)

        except urllib.error.HTTPError as e:
            return Err(HttpError(url=url, status=e.code, message=str(e.reason)))
        except urllib.error.URLError as e:
            return Err(HttpError(url=url, status=0, message=str(e.reason)))
        except TimeoutError:
            return Err(HttpError(url=url, status=0, message="Download timed out"))
        except ValueError as e:
            return Err(HttpError(url=url, status=0, message=str(e)))
        except OSError as e:
            return Err(HttpError(url=url, status=0, message=str(e)))


@dataclass(frozen=True, slots=True)
class HttpCall:
    """A request recorded by MockHttpClient."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)


class MockHttpClient:
    """Mock HTTP client for testing.

    Allows setting predefined responses for specific URLs. Unknown URLs
    answer 404.

    Usage:
        client = MockHttpClient()
        client.set_json("https://api.github.com/repos/o/r/releases/latest", {"assets": []})
        result = client.get_json("https://api.github.com/repos/o/r/releases/latest")
        assert result == Ok({"assets": []})
    """

    def __init__(self) -> None:
        self._json_responses: dict[str, dict[str, Any] | HttpError] = {}
        self._download_responses: dict[str, bytes | HttpError] = {}
        self.calls: list[HttpCall] = []

    def set_json(self, url: str, response: dict[str, Any] | HttpError) -> None:
        self._json_responses[url] = response

    def set_download(self, url: str, response: bytes | HttpError) -> None:
        self._download_responses[url] = response

    def urls(self, method: str) -> list[str]:
        """URLs requested with ``method`` (``get_json`` or ``download``), in order."""
        return [call.url for call in self.calls if call.method == method]

    def get_json(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
    ) -> Result[dict[str, Any], HttpError]:
        self.calls.append(HttpCall("get_json", url, dict(headers or {})))

        if url not in self._json_responses:
            return Err(HttpError(url=url, status=404, message="Not found (mock)"))

        response = self._json_responses[url]
        if isinstance(response, HttpError):
            return Err(response)
        return Ok(response)

    def download(
        self,
        url: str,
        dest: Path,
        *,
        headers: Mapping[str, str] | None = None,
        progress: Callable[[int, int], None] | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[Path, HttpError]:
        """Mock download - writes predefined content to dest."""
        self.calls.append(HttpCall("download", url, dict(headers or {})))
        raise_if_cancelled(cancel)

        if url not in self._download_responses:
            return Err(HttpError(url=url, status=404, message="Not found (mock)"))

        response = self._download_responses[url]
        if isinstance(response, HttpError):
            return Err(response)

        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(response)

        if progress:
            progress(len(response), len(response))

        return Ok(dest)
