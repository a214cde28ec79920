"""WSGI adapters so a WSGI app can act as a streaming reverse proxy."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, BinaryIO, Callable, Mapping
from urllib.parse import quote

from .headers import canonical_header_name
from .streams import LimitedStream


# CGI variables that carry headers without the HTTP_ prefix.
_UNPREFIXED_HEADERS = {
    "CONTENT_TYPE": "Content-Type",
    "CONTENT_LENGTH": "Content-Length",
}


@dataclass
class WSGIRequest:
    method: str
    url: str
    headers: dict[str, list[str]]
    body: BinaryIO
    host: str = ""
    environ: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @property
    def request_uri(self) -> str:
        """Path and query string, e.g. ``/search?q=1``."""
        _, _, rest = self.url.partition("://")
        _, slash, path = rest.partition("/")
        return slash + path if slash else "/"

    @classmethod
    def from_environ(cls, environ: Mapping[str, Any]) -> "WSGIRequest":
        headers: dict[str, list[str]] = {}
        for key, value in environ.items():
            if key in _UNPREFIXED_HEADERS:
                name = _UNPREFIXED_HEADERS[key]
            elif key.startswith("HTTP_") and key != "HTTP_HOST":
                name = canonical_header_name(key[5:])
            else:
                continue
            if value == "":
                continue
            headers[name] = [str(value)]

        host = environ.get("HTTP_HOST") or environ.get("SERVER_NAME", "")
        path = quote(environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", ""))
        query = environ.get("QUERY_STRING", "")
        url = f"{environ.get('wsgi.url_scheme', 'http')}://{host}{path or '/'}"
        if query:
            url += "?" + query

        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        wsgi_input = environ.get("wsgi.input")
        if wsgi_input is not None and length > 0:
            body: BinaryIO = LimitedStream(wsgi_input, length)
        else:
            body = io.BytesIO()

        return cls(
            method=environ.get("REQUEST_METHOD", "GET"),
            url=url,
            headers=headers,
            body=body,
            host=host,
            environ=environ,
        )


class WSGIResponseWriter:
    """Feeds a relayed response through ``start_response`` and its ``write``."""

    def __init__(self, start_response: Callable[..., Callable[[bytes], object]]) -> None:
        self._start_response = start_response
        self._headers: list[tuple[str, str]] = []
        self._write: Callable[[bytes], object] | None = None

    @property
    def headers(self) -> list[tuple[str, str]]:
        return self._headers

    def add_header(self, name: str, value: str) -> None:
        self._headers.append((name, value))

    def write_head(self, status_code: int) -> None:
        try:
            reason = HTTPStatus(status_code).phrase
        except ValueError:
            reason = "Unknown"
        self._write = self._start_response(f"{status_code} {reason}", self._headers)

    def write(self, data: bytes) -> object:
        if self._write is None:
            self.write_head(200)
        return self._write(data)  # type: ignore[misc]
