"""Exceptions raised while building, sending and relaying requests."""

from __future__ import annotations

from typing import Mapping


class ReqError(Exception):
    """Base exception for all pipereq failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: object = None,
        headers: Mapping[str, str] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.headers = dict(headers) if headers is not None else {}
        self.cause = cause

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.status_code is None:
            return str(self.args[0])
        return f"{self.status_code}: {self.args[0]}"


class ReqConfigError(ReqError):
    """Raised when a target or proxy URL cannot be used. Nothing was sent."""


class ReqSerializationError(ReqError):
    """Raised when a structured body cannot be encoded as JSON."""


class ReqTransportError(ReqError):
    """Raised for transport-level failures like DNS, TCP and TLS errors."""


class ReqTimeoutError(ReqTransportError):
    """Raised when an exchange exceeds its timeout."""


class ReqDecodeError(ReqError):
    """Raised when a response body cannot be decoded."""


class ReqHTTPError(ReqError):
    """Raised by ``raise_for_status`` for HTTP error responses."""


class ReqRelayError(ReqError):
    """Raised when a relay fails part way through a copy.

    ``bytes_written`` bytes already reached the sink and are not rolled back.
    """

    def __init__(self, message: str, *, bytes_written: int = 0, cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
        self.bytes_written = bytes_written
