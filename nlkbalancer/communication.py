"""HTTP sessions set up for talking to the NGINX Plus API."""

from __future__ import annotations

from typing import Any

import requests
from requests.adapters import HTTPAdapter

from nlkbalancer.buildinfo import semver

MAX_HEADERS = 1000
DEFAULT_TIMEOUT = 10.0


class TooManyHeadersError(ValueError):
    """Raised when a request carries more headers than allowed."""

    def __init__(self) -> None:
        super().__init__("request includes too many headers")


def new_headers(api_key: str) -> list[str]:
    """The default headers, as "Name: value" lines, for every request."""
    headers = [
        "Content-Type: application/json",
        "Accept: application/json",
        f"X-NLK-Version: {semver()}",
    ]
    if api_key:
        headers.append(f"Authorization: ApiKey {api_key}")
    return headers


class HeaderAdapter(HTTPAdapter):
    """Transport adapter that adds default headers and a default timeout."""

    def __init__(self, headers: list[str], timeout: float = DEFAULT_TIMEOUT) -> None:
        super().__init__()
        self.headers = list(headers)
        self.timeout = timeout

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        if len(request.headers) > MAX_HEADERS:
            raise TooManyHeadersError()

        prepared = request.copy()
        for line in self.headers:
            name, sep, value = line.partition(":")
            if sep:
                prepared.headers[name] = value.strip()

        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(prepared, **kwargs)


def new_http_client(api_key: str, skip_verify: bool) -> requests.Session:
    """A session for NGINXaaS or the NGINX Plus API.

    When skip_verify is true, TLS certificates are not verified.
    """
    session = requests.Session()
    adapter = HeaderAdapter(new_headers(api_key), DEFAULT_TIMEOUT)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = not skip_verify
    return session