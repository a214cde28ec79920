from __future__ import annotations

import gzip
import io
import json
from http.cookiejar import CookieJar
from typing import Callable

import httpx
import pytest
from pydantic import BaseModel

from pipereq.client import ReqBuilder
from pipereq.exceptions import (
    ReqConfigError,
    ReqDecodeError,
    ReqHTTPError,
    ReqSerializationError,
    ReqTimeoutError,
    ReqTransportError,
)
from pipereq.request_options import ReqOptions
from pipereq.streams import IteratorStream
from pipereq.transport import HttpTransport


Handler = Callable[[httpx.Request], httpx.Response]


def _builder(handler: Handler, options: ReqOptions | None = None) -> ReqBuilder:
    transport = HttpTransport(transport=httpx.MockTransport(handler), trust_env=False)
    return ReqBuilder(options, transport=transport)


def _streamed(data: bytes) -> object:
    # Iterator content keeps httpx from buffering the body up front.
    return iter([data])


class Person(BaseModel):
    Name: str
    Age: int


def test_get_returns_body_and_response() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        return httpx.Response(200, content=_streamed(b"abc"), request=request)

    body, response = _builder(send_request).get("http://example.com/").do()

    assert body == b"abc"
    assert response.status_code == 200


def test_method_defaults_to_get_and_is_uppercased() -> None:
    methods: list[str] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return httpx.Response(204, request=request)

    _builder(send_request, ReqOptions(url="http://example.com/")).do()
    _builder(send_request, ReqOptions(method="delete", url="http://example.com/")).do()

    assert methods == ["GET", "DELETE"]


def test_post_form_data() -> None:
    captured: dict[str, object] = {}

    def send_request(request: httpx.Request) -> httpx.Response:
        captured["content_type"] = request.headers["content-type"]
        captured["body"] = request.content
        return httpx.Response(200, request=request)

    _builder(send_request).post("http://example.com/formdata").form_data({"userName": "nxu", "pwd": "111"}).do()

    assert captured["content_type"] == "application/x-www-form-urlencoded"
    assert captured["body"] == b"pwd=111&userName=nxu"


def test_post_json_string_and_object() -> None:
    bodies: list[tuple[str, bytes]] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        bodies.append((request.headers["content-type"], request.content))
        return httpx.Response(200, request=request)

    req = _builder(send_request)
    req.post("http://example.com/jsonstr").json_string(b"{ok:1}").do()
    req.post("http://example.com/jsonobj").json_object({"ok": "abc"}).do()
    req.post("http://example.com/jsonobj2").json_object(Person(Name="xdw", Age=30)).do()

    assert bodies == [
        ("application/json", b"{ok:1}"),
        ("application/json", b'{"ok":"abc"}'),
        ("application/json", b'{"Name":"xdw","Age":30}'),
    ]


def test_body_strategy_overwrites_manual_content_type() -> None:
    captured: dict[str, list[str]] = {}

    def send_request(request: httpx.Request) -> httpx.Response:
        captured["content-type"] = request.headers.get_list("content-type")
        return httpx.Response(200, request=request)

    req = _builder(send_request, ReqOptions(headers={"content-type": "text/plain"}))
    req.post("http://example.com/").json_object({"a": 1}).do()

    assert captured["content-type"] == ["application/json"]
    assert req.options.headers["Content-Type"] == ["application/json"]


def test_serialization_error_is_raised_before_sending() -> None:
    calls: list[httpx.Request] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, request=request)

    with pytest.raises(ReqSerializationError):
        _builder(send_request).post("http://example.com/").json_object({"bad": object()}).do()
    assert calls == []


def test_suppressed_headers_are_omitted() -> None:
    captured: dict[str, httpx.Headers] = {}

    def send_request(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        return httpx.Response(200, request=request)

    options = ReqOptions(
        headers={"header1": "headver1_val", "header2": "headver2_val"},
        headers_to_suppress={"header2"},
    )
    _builder(send_request, options).get("http://example.com/req1").do()

    assert captured["headers"]["header1"] == "headver1_val"
    assert "header2" not in captured["headers"]


def test_multi_valued_headers_keep_order() -> None:
    captured: dict[str, list[str]] = {}

    def send_request(request: httpx.Request) -> httpx.Response:
        captured["values"] = request.headers.get_list("x-multi")
        return httpx.Response(200, request=request)

    _builder(send_request).get("http://example.com/").header("X-Multi", "b").header("X-Multi", "a").do()

    assert captured["values"] == ["b", "a"]


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("http://host/path", "http://host/path?a=1"),
        ("http://host/path?x=1", "http://host/path?x=1&a=1"),
    ],
)
def test_query_parameters_are_appended(url: str, expected: str) -> None:
    seen: list[str] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, request=request)

    _builder(send_request).get(url).query("a", "1").do()

    assert seen == [expected]


@pytest.mark.parametrize("url", ["", "not a url", "ftp://host/file", "http:///nohost"])
def test_invalid_target_url_fails_before_sending(url: str) -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        raise AssertionError("nothing should be sent")

    with pytest.raises(ReqConfigError):
        _builder(send_request).get(url).do()


def test_invalid_proxy_fails_and_releases_forwarded_body() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        raise AssertionError("nothing should be sent")

    stream = io.BytesIO(b"payload")
    req = _builder(send_request).post("http://example.com/").proxy("not-a-proxy").body_stream(stream)

    with pytest.raises(ReqConfigError):
        req.do()
    assert stream.closed


def test_proxy_change_rebuilds_client() -> None:
    transport = HttpTransport(transport=httpx.MockTransport(lambda r: httpx.Response(200)), trust_env=False)

    first = transport.configure(proxy="http://localhost:8888")
    assert transport.proxy == "http://localhost:8888"
    assert transport.configure(proxy="http://localhost:8888") is first

    second = transport.configure()
    assert second is not first
    assert transport.proxy is None


def test_gzip_body_is_decoded() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Encoding": "gzip"},
            content=_streamed(gzip.compress(b"abc")),
            request=request,
        )

    body, _ = _builder(send_request).get("http://example.com/").do()
    assert body == b"abc"


def test_other_encodings_are_passed_through() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Encoding": "identity"},
            content=_streamed(b"abc"),
            request=request,
        )

    body, _ = _builder(send_request).get("http://example.com/").do()
    assert body == b"abc"


def test_malformed_gzip_fails_before_body_is_returned() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Encoding": "gzip"},
            content=_streamed(b"this is not gzip"),
            request=request,
        )

    with pytest.raises(ReqDecodeError):
        _builder(send_request).get("http://example.com/").send()


class ResetStream(httpx.SyncByteStream):
    def __init__(self) -> None:
        self.closed = False

    def __iter__(self):
        raise httpx.ReadError("reset")

    def close(self) -> None:
        self.closed = True


def test_read_error_while_probing_gzip_is_wrapped_and_released() -> None:
    upstream = ResetStream()

    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=upstream, request=request)

    with pytest.raises(ReqTransportError):
        _builder(send_request).get("http://example.com/").send()
    assert upstream.closed


def test_send_result_releases_response_on_close() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_streamed(b"abc"), request=request)

    with _builder(send_request).get("http://example.com/").send() as result:
        assert result.status_code == 200
        assert result.stream.read(1) == b"a"
    assert result.response.is_closed
    result.close()


def test_forwarded_body_is_streamed_and_closed() -> None:
    captured: dict[str, object] = {}

    def send_request(request: httpx.Request) -> httpx.Response:
        captured["body"] = request.content
        captured["content_type"] = request.headers.get("content-type")
        return httpx.Response(200, request=request)

    stream = IteratorStream(iter([b"ab", b"c"]))
    req = _builder(send_request).post("http://example.com/").body_stream(stream, "text/plain")
    req.do()

    assert captured == {"body": b"abc", "content_type": "text/plain"}
    assert stream.closed
    assert req.options.body is None


def test_forwarded_body_content_type_does_not_outlive_the_body() -> None:
    seen: list[tuple[str | None, bytes]] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        seen.append((request.headers.get("content-type"), request.content))
        return httpx.Response(200, request=request)

    req = _builder(send_request).post("http://example.com/").body_stream(io.BytesIO(b"x"), "text/csv")
    req.do()
    req.do()

    assert seen == [("text/csv", b"x"), (None, b"")]


def test_explicit_redirect_flag_returns_first_redirect() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/start":
            return httpx.Response(302, headers={"Location": "/final"}, request=request)
        return httpx.Response(200, content=_streamed(b"final"), request=request)

    for flag in (True, False):
        body, response = _builder(send_request, ReqOptions(follow_redirects=flag)).get("http://example.com/start").do()
        assert response.status_code == 302
        assert response.headers["location"] == "/final"
        assert body == b""

    body, response = _builder(send_request).get("http://example.com/start").do()
    assert response.status_code == 200
    assert body == b"final"


def test_connection_reuse_override() -> None:
    seen: list[str | None] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("connection"))
        return httpx.Response(200, request=request)

    _builder(send_request, ReqOptions(disable_connection_reuse=True)).get("http://example.com/").do()
    _builder(send_request, ReqOptions(disable_connection_reuse=False)).get("http://example.com/").do()

    assert seen == ["close", "keep-alive"]


def test_timeout_is_reapplied_every_exchange() -> None:
    timeouts: list[float] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        timeouts.append(request.extensions["timeout"]["read"])
        return httpx.Response(200, request=request)

    req = _builder(send_request).get("http://example.com/")
    req.timeout(5).do()
    req.timeout(0).do()

    assert timeouts == [5.0, HttpTransport.default_timeout]


def test_timeout_env_var_sets_transport_default(monkeypatch) -> None:
    monkeypatch.setenv("PIPEREQ_TIMEOUT", "12.5")
    assert HttpTransport().timeout == 12.5


def test_cookie_jar_persists_across_exchanges() -> None:
    seen: list[str | None] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("cookie"))
        return httpx.Response(200, headers={"Set-Cookie": "session=abc; Path=/"}, request=request)

    jar = CookieJar()
    req = _builder(send_request, ReqOptions(cookie_jar=jar)).get("http://example.com/")
    req.do()
    req.do()

    assert seen == [None, "session=abc"]
    assert [cookie.name for cookie in jar] == ["session"]


def test_no_cookie_jar_means_no_persistence() -> None:
    seen: list[str | None] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("cookie"))
        return httpx.Response(200, headers={"Set-Cookie": "session=abc; Path=/"}, request=request)

    req = _builder(send_request).get("http://example.com/")
    req.do()
    req.do()

    assert seen == [None, None]


def test_transport_errors_are_wrapped() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ReqTransportError) as exc_info:
        _builder(refuse).get("http://example.com/").do()
    assert isinstance(exc_info.value.cause, httpx.ConnectError)


def test_timeouts_are_wrapped() -> None:
    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(ReqTimeoutError):
        _builder(slow).get("http://example.com/").do()


def test_to_validates_json_body() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Name": "xdw", "Age": 30}, request=request)

    person, response = _builder(send_request).get("http://example.com/").to(Person)

    assert person == Person(Name="xdw", Age=30)
    assert response.status_code == 200


def test_to_rejects_mismatched_body() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_streamed(json.dumps({"Name": "xdw"}).encode()), request=request)

    with pytest.raises(ReqDecodeError):
        _builder(send_request).get("http://example.com/").to(Person)


def test_raise_for_status() -> None:
    def send_request(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, content=_streamed(b"missing"), request=request)

    result = _builder(send_request).get("http://example.com/").send()
    with pytest.raises(ReqHTTPError) as exc_info:
        result.raise_for_status()

    assert exc_info.value.status_code == 404
    assert exc_info.value.body == b"missing"
    assert result.response.is_closed


def test_connection_reuse_override_replaces_caller_connection_header() -> None:
    seen: list[list[str]] = []

    def send_request(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get_list("connection"))
        return httpx.Response(200, request=request)

    req = _builder(send_request, ReqOptions(disable_connection_reuse=True))
    req.get("http://example.com/").header("Connection", "keep-alive").do()

    assert seen == [["close"]]
