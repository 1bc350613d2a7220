"""A small blocking HTTP client used by the providers."""

from __future__ import annotations

import urllib.error
import urllib.request
from typing import Iterable, Mapping, Optional, Tuple, Union

Headers = Union[Mapping[str, str], Iterable[Tuple[str, str]], None]


class HttpError(Exception):
    """Raised when a request fails or returns a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class HttpClient:
    """Sends GET and POST requests with a fixed timeout in seconds."""

    def __init__(self, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout!r}")
        self.timeout = timeout

    def get(self, url: str, headers: Headers = None) -> bytes:
        """Fetch ``url`` and return the response body."""
        return self._send("GET", url, None, headers)

    def post(self, url: str, body: Union[bytes, str], headers: Headers = None) -> bytes:
        """Post ``body`` to ``url`` and return the response body."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        return self._send("POST", url, body, headers)

    def _send(self, method: str, url: str, body: Optional[bytes], headers: Headers) -> bytes:
        try:
            request = urllib.request.Request(
                url, data=body, method=method, headers=dict(headers or {})
            )
        except ValueError as err:
            raise HttpError(f"invalid url {url!r}") from err

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.read()
        except urllib.error.HTTPError as err:
            raise HttpError(f"unexpected status {err.code} from {url}", status=err.code) from err
        except urllib.error.URLError as err:
            raise HttpError(f"request to {url} failed: {err.reason}") from err
        except (OSError, ValueError) as err:
            raise HttpError(f"request to {url} failed: {err}") from err