"""Readable byte streams and the chunked copy used by every relay."""

from __future__ import annotations

import gzip
import io
import logging
import zlib
from typing import BinaryIO, Callable, Iterator

import httpx

from .exceptions import ReqDecodeError, ReqRelayError, ReqTransportError


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 32 * 1024

_COPY_ERRORS = (OSError, EOFError, ValueError, zlib.error, httpx.HTTPError)


class IteratorStream(io.RawIOBase):
    """File-like view over an iterator of byte chunks.

    ``on_close`` runs exactly once, on the first ``close()``.
    """

    def __init__(self, chunks: Iterator[bytes], on_close: Callable[[], None] | None = None) -> None:
        super().__init__()
        self._chunks = chunks
        self._pending = b""
        self._on_close = on_close

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self) -> None:
        if self.closed:
            return
        on_close, self._on_close = self._on_close, None
        try:
            if on_close is not None:
                on_close()
        finally:
            super().close()


class GzipStream(io.RawIOBase):
    """Decompresses a gzip-encoded stream it owns.

    The gzip header is read up front, so a malformed body fails here and
    not on the first read. The wrapped stream is closed at end-of-stream
    or when this stream is closed, whichever comes first.
    """

    def __init__(self, raw: BinaryIO) -> None:
        super().__init__()
        self._raw = raw
        self._gzip = gzip.GzipFile(fileobj=raw, mode="rb")
        try:
            self._gzip.peek(1)
        except httpx.HTTPError as exc:
            self.close()
            raise ReqTransportError(f"Failed to read response body: {exc}", cause=exc) from exc
        except (OSError, EOFError, zlib.error) as exc:
            self.close()
            raise ReqDecodeError(f"Malformed gzip response body: {exc}", cause=exc) from exc

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        size = self._gzip.readinto(buffer)
        if size == 0:
            self._raw.close()
        return size

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._gzip.close()
        finally:
            self._raw.close()
            super().close()


class LimitedStream(io.RawIOBase):
    """Reads at most ``limit`` bytes from ``raw``; closing closes ``raw``."""

    def __init__(self, raw: BinaryIO, limit: int) -> None:
        super().__init__()
        self._raw = raw
        self._remaining = max(0, limit)

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        if self._remaining <= 0:
            return 0
        data = self._raw.read(min(len(buffer), self._remaining))
        if not data:
            self._remaining = 0
            return 0
        size = len(data)
        buffer[:size] = data
        self._remaining -= size
        return size

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._raw.close()
        finally:
            super().close()


def iter_chunks(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield ``stream`` in chunks until a zero-length read."""
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            return
        yield chunk


def copy_stream(
    source: BinaryIO,
    write: Callable[[bytes], object],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy ``source`` into ``write`` chunk by chunk and return the byte count.

    A failure part way through raises :class:`ReqRelayError`; whatever was
    already written stays written.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be greater than 0")
    written = 0
    try:
        for chunk in iter_chunks(source, chunk_size):
            write(chunk)
            written += len(chunk)
    except _COPY_ERRORS as exc:
        logger.debug("Relay aborted after %d bytes: %s", written, exc)
        raise ReqRelayError(
            f"Relay failed after {written} bytes: {exc}",
            bytes_written=written,
            cause=exc,
        ) from exc
    return written
