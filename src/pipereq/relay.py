"""Relays that forward a live byte stream from one exchange into another place.

Nothing here buffers whole bodies: data moves in chunks, so a failure after
the first chunk leaves the destination with partial data.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, BinaryIO, Callable, Mapping, Protocol, Sequence

from .bodies import ForwardedBody
from .headers import HOP_BY_HOP_HEADERS, canonical_header_name, normalize_multi
from .request_options import ReqOptions, merge_options
from .streams import DEFAULT_CHUNK_SIZE, copy_stream

if TYPE_CHECKING:
    from .client import ExchangeResult, ReqBuilder


logger = logging.getLogger(__name__)

# Both sets hold lower-case names and are compared case-insensitively.
REQUEST_SUPPRESSED_HEADERS = frozenset({"connection", "referer", "origin"})
RESPONSE_SUPPRESSED_HEADERS = HOP_BY_HOP_HEADERS


class InboundRequest(Protocol):
    """A request received by a server, as seen by a reverse proxy."""

    method: str
    url: str
    headers: Mapping[str, Sequence[str]]
    body: BinaryIO


class ResponseWriter(Protocol):
    """The server-side response a relay writes into."""

    def add_header(self, name: str, value: str) -> None: ...

    def write_head(self, status_code: int) -> None: ...

    def write(self, data: bytes) -> object: ...


def relay_to_sink(
    result: ExchangeResult,
    write: Callable[[bytes], object],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    with result:
        written = copy_stream(result.stream, write, chunk_size)
    logger.debug("Relayed %d bytes to sink", written)
    return written


def relay_to_response(
    result: ExchangeResult,
    writer: ResponseWriter,
    *,
    suppress: frozenset[str] = RESPONSE_SUPPRESSED_HEADERS,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    with result:
        for name, value in result.headers.multi_items():
            if name.lower() not in suppress:
                writer.add_header(canonical_header_name(name), value)
        writer.write_head(result.status_code)
        written = copy_stream(result.stream, writer.write, chunk_size)
    logger.debug("Relayed %d status with %d body bytes to response", result.status_code, written)
    return written


def forward_response(result: ExchangeResult, next_req: ReqBuilder) -> ReqBuilder:
    """Install ``result``'s body as the body of the not yet sent ``next_req``.

    ``next_req`` owns the stream from here on and closes it (and with it
    the upstream response) when it sends.
    """
    content_type = result.headers.get("Content-Type", "")
    next_req.options.body = ForwardedBody(result.stream, content_type)
    return next_req


def _first_value(headers: Mapping[str, Sequence[str]], name: str) -> str:
    for key, values in headers.items():
        if key.lower() == name.lower() and values:
            return values[0]
    return ""


def forward_inbound_request(
    inbound: InboundRequest,
    builder: ReqBuilder,
    *,
    suppress: frozenset[str] = REQUEST_SUPPRESSED_HEADERS,
) -> ReqBuilder:
    """Overlay ``inbound``'s headers under the builder's and stream its body."""
    inbound_headers = normalize_multi(inbound.headers)
    passed: dict[str, list[str]] = {}
    for name, values in inbound_headers.items():
        if name.lower() not in suppress:
            passed.setdefault(canonical_header_name(name), []).extend(values)
    builder.options = merge_options(builder.options, ReqOptions(headers=passed))
    builder.options.body = ForwardedBody(inbound.body, _first_value(inbound_headers, "Content-Type"))
    logger.debug("Forwarding inbound %s %s with %d headers", inbound.method, inbound.url, len(passed))
    return builder
