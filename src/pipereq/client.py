"""Chainable request builder: assembles, sends and relays HTTP exchanges."""

from __future__ import annotations

import io
import logging
import zlib
from typing import Any, BinaryIO, Iterator, Mapping, Protocol, Sequence, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from .bodies import FormBody, ForwardedBody, JSONBody, RawBody
from .exceptions import (
    ReqDecodeError,
    ReqHTTPError,
    ReqTimeoutError,
    ReqTransportError,
)
from .headers import validate_proxy_url, validate_target_url
from .relay import (
    InboundRequest,
    ResponseWriter,
    forward_inbound_request,
    forward_response,
    relay_to_response,
    relay_to_sink,
)
from .request_options import DEFAULT_OPTIONS, ReqOptions, merge_options
from .streams import DEFAULT_CHUNK_SIZE, GzipStream, IteratorStream, iter_chunks
from .transport import HttpTransport


logger = logging.getLogger(__name__)

T = TypeVar("T")


class SupportsWrite(Protocol):
    def write(self, data: bytes, /) -> object: ...


class ExchangeResult:
    """A response whose body has not been read yet.

    The caller owns ``stream`` and must close the result on every path;
    using it as a context manager does that. Closing twice is harmless.
    """

    def __init__(
        self,
        response: httpx.Response,
        stream: BinaryIO,
        headers: httpx.Headers | None = None,
    ) -> None:
        self.response = response
        self.stream = stream
        self._headers = headers if headers is not None else response.headers

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        """Headers describing ``stream``, which may differ from the wire ones."""
        return self._headers

    def __enter__(self) -> "ExchangeResult":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def read(self) -> bytes:
        """Read the whole (decoded) body and release the exchange."""
        try:
            return self.stream.read()
        except httpx.HTTPError as exc:
            raise ReqTransportError("Failed to read response body", cause=exc) from exc
        except (OSError, EOFError, zlib.error) as exc:
            raise ReqDecodeError(f"Failed to decode response body: {exc}", cause=exc) from exc
        finally:
            self.close()

    def close(self) -> None:
        try:
            self.stream.close()
        finally:
            self.response.close()

    def raise_for_status(self) -> None:
        if self.status_code < 400:
            return
        try:
            body: object = self.read()
        except (ReqTransportError, ReqDecodeError):
            body = None
        raise ReqHTTPError(
            self.response.reason_phrase or "request failed",
            status_code=self.status_code,
            body=body,
            headers=dict(self.headers),
        )


class ReqBuilder:
    """Fluent builder around one :class:`ReqOptions` record.

    A builder may send many times, but is not safe for concurrent use;
    :meth:`derive` gives an independent child for that.
    """

    chunk_size = DEFAULT_CHUNK_SIZE

    def __init__(
        self,
        options: ReqOptions | None = None,
        *,
        transport: HttpTransport | None = None,
        defaults: ReqOptions = DEFAULT_OPTIONS,
    ) -> None:
        if options is None:
            self.options = merge_options(None, defaults)
        else:
            self.options = options.copy()
        self._transport = transport or HttpTransport()

    def __enter__(self) -> "ReqBuilder":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._transport.close()

    @property
    def transport(self) -> HttpTransport:
        return self._transport

    def derive(self, override: ReqOptions | None = None) -> "ReqBuilder":
        """New builder from a copy of this one's options with ``override`` on top."""
        merged = merge_options(override, self.options.copy())
        return ReqBuilder(merged, transport=self._transport.spawn())

    def _with_method(self, method: str, url: str) -> "ReqBuilder":
        self.options.method = method
        self.options.url = url
        return self

    def get(self, url: str) -> "ReqBuilder":
        return self._with_method("GET", url)

    def post(self, url: str) -> "ReqBuilder":
        return self._with_method("POST", url)

    def put(self, url: str) -> "ReqBuilder":
        return self._with_method("PUT", url)

    def patch(self, url: str) -> "ReqBuilder":
        return self._with_method("PATCH", url)

    def delete(self, url: str) -> "ReqBuilder":
        return self._with_method("DELETE", url)

    def head(self, url: str) -> "ReqBuilder":
        return self._with_method("HEAD", url)

    def header(self, name: str, value: str) -> "ReqBuilder":
        self.options.headers.setdefault(name, []).append(value)
        return self

    def query(self, name: str, value: str) -> "ReqBuilder":
        self.options.query.setdefault(name, []).append(value)
        return self

    def suppress_header(self, name: str) -> "ReqBuilder":
        self.options.headers_to_suppress.add(name)
        return self

    def timeout(self, seconds: float) -> "ReqBuilder":
        self.options.timeout = seconds
        return self

    def proxy(self, url: str | None) -> "ReqBuilder":
        self.options.proxy = url
        return self

    def form_data(self, fields: Mapping[str, str | Sequence[str]]) -> "ReqBuilder":
        self.options.body = FormBody(fields)
        return self

    def json_string(self, content: bytes | str) -> "ReqBuilder":
        self.options.body = RawBody(content.encode() if isinstance(content, str) else content)
        return self

    def json_object(self, content: Any) -> "ReqBuilder":
        self.options.body = JSONBody(content)
        return self

    def body_stream(self, stream: BinaryIO, content_type: str = "") -> "ReqBuilder":
        """Send ``stream`` as the body; the builder takes ownership of it."""
        self.options.body = ForwardedBody(stream, content_type)
        return self

    def _configure_transport(self) -> httpx.Client:
        options = self.options
        proxy = None
        if options.proxy is not None:
            proxy = str(validate_proxy_url(options.proxy))
        return self._transport.configure(
            proxy=proxy,
            cookie_jar=options.cookie_jar,
            timeout=options.timeout,
        )

    def _build_body(self) -> BinaryIO | None:
        options = self.options
        if options.body is None:
            return None
        content_type, stream = options.body.build()
        options.remove_header("Content-Type")
        if content_type:
            options.set_header("Content-Type", content_type)
        return stream

    def _build_request(self, client: httpx.Client, body_stream: BinaryIO | None) -> httpx.Request:
        options = self.options
        url = options.build_url()
        validate_target_url(url)

        headers = [
            (name, value)
            for name, values in options.headers.items()
            if name not in options.headers_to_suppress
            for value in values
        ]
        if options.disable_connection_reuse is not None:
            headers = [(name, value) for name, value in headers if name.lower() != "connection"]
            headers.append(("Connection", "close" if options.disable_connection_reuse else "keep-alive"))

        content: bytes | Iterator[bytes] | None = None
        if isinstance(body_stream, io.BytesIO):
            content = body_stream.getvalue()
        elif body_stream is not None:
            content = iter_chunks(body_stream, self.chunk_size)

        return client.build_request(
            (options.method or "GET").upper(),
            url,
            headers=headers,
            content=content,
        )

    def _redirect_policy(self) -> bool | None:
        # Unset leaves the client default in place; either explicit value
        # stops at the first 3xx and hands it back.
        if self.options.follow_redirects is None:
            return None
        return False

    def _expose(self, response: httpx.Response, decode_content: bool) -> ExchangeResult:
        if response.is_stream_consumed:
            # Already buffered, and decoded, by httpx. The raw bytes are gone,
            # so the headers must stop claiming an encoding.
            buffered = IteratorStream(iter([response.content]), on_close=response.close)
            headers = None
            if not decode_content and "Content-Encoding" in response.headers:
                headers = response.headers.copy()
                del headers["Content-Encoding"]
                headers["Content-Length"] = str(len(response.content))
            return ExchangeResult(response, buffered, headers)
        stream: BinaryIO = IteratorStream(response.iter_raw(), on_close=response.close)
        encoding = response.headers.get("Content-Encoding", "").strip().lower()
        if decode_content and encoding == "gzip":
            logger.debug("Decoding gzip body from %s", response.url)
            stream = GzipStream(stream)
        return ExchangeResult(response, stream)

    def send(self, *, decode_content: bool = True) -> ExchangeResult:
        """Perform the exchange and hand back the unread response.

        Configuration problems raise before anything is sent. With
        ``decode_content`` a gzip body is decompressed transparently.
        """
        forwarded = self.options.body if isinstance(self.options.body, ForwardedBody) else None
        body_stream: BinaryIO | None = None
        try:
            client = self._configure_transport()
            body_stream = self._build_body()
            request = self._build_request(client, body_stream)
            response = self._transport.send(request, follow_redirects=self._redirect_policy())
        except httpx.TimeoutException as exc:
            logger.debug("%s %s timed out: %s", self.options.method, self.options.url, exc)
            raise ReqTimeoutError("Request timed out", cause=exc) from exc
        except httpx.RequestError as exc:
            logger.debug("%s %s failed: %s", self.options.method, self.options.url, exc)
            raise ReqTransportError(f"Transport error: {exc}", cause=exc) from exc
        finally:
            if body_stream is not None:
                body_stream.close()
            elif forwarded is not None:
                forwarded.close()
            if forwarded is not None:
                # The stream is spent; later exchanges go out without a body.
                self.options.body = None
                self.options.remove_header("Content-Type")
        return self._expose(response, decode_content)

    def do(self) -> tuple[bytes, httpx.Response]:
        """Send and read the whole body."""
        result = self.send()
        body = result.read()
        return body, result.response

    def to(self, type_: type[T]) -> tuple[T, httpx.Response]:
        """Send and validate the JSON body into ``type_``."""
        body, response = self.do()
        try:
            value = TypeAdapter(type_).validate_json(body)
        except ValidationError as exc:
            raise ReqDecodeError(
                f"Response body is not a valid {getattr(type_, '__name__', type_)}",
                status_code=response.status_code,
                body=body,
                cause=exc,
            ) from exc
        return value, response

    def pipe_stream(self, sink: SupportsWrite) -> int:
        """Send and copy the decoded body into ``sink``; returns bytes copied."""
        return relay_to_sink(self.send(), sink.write, chunk_size=self.chunk_size)

    def pipe_to_response(self, writer: ResponseWriter) -> int:
        """Send and replay status, headers and raw body onto ``writer``."""
        return relay_to_response(self.send(decode_content=False), writer, chunk_size=self.chunk_size)

    def pipe_req(self, next_req: "ReqBuilder") -> "ReqBuilder":
        """Send, then make this response's body the body of ``next_req``."""
        return forward_response(self.send(), next_req)

    def pipe_from_req(self, inbound: InboundRequest) -> "ReqBuilder":
        """Take headers and body from an inbound server request."""
        return forward_inbound_request(inbound, self)

    pipe_from_http_req = pipe_from_req
