"""Request configuration records and the overlay rules between them."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from http.cookiejar import CookieJar
from typing import Mapping, Sequence

from .bodies import BodyStrategy, encode_values
from .headers import normalize_multi


@dataclass
class ReqOptions:
    """Everything needed to assemble one exchange.

    ``None`` on ``follow_redirects``, ``disable_connection_reuse`` and ``proxy``
    means the caller never set it, which is what lets :func:`merge_options`
    fill those fields from a template without clobbering explicit values.

    ``follow_redirects``: unset defers to the transport, ``True`` stops at the
    first redirect and returns it, ``False`` never follows.
    """

    method: str = ""
    url: str = ""
    headers: dict[str, list[str]] = field(default_factory=dict)
    follow_redirects: bool | None = None
    disable_connection_reuse: bool | None = None
    proxy: str | None = None
    cookie_jar: CookieJar | None = None
    query: dict[str, list[str]] = field(default_factory=dict)
    body: BodyStrategy | None = None
    timeout: float = 0.0
    headers_to_suppress: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.headers = normalize_multi(self.headers)
        self.query = normalize_multi(self.query)
        self.headers_to_suppress = set(self.headers_to_suppress or ())
        if self.timeout is None:
            self.timeout = 0.0

    def copy(self) -> "ReqOptions":
        """Independent copy; the cookie jar and body strategy stay shared."""
        return replace(
            self,
            headers={k: list(v) for k, v in self.headers.items()},
            query={k: list(v) for k, v in self.query.items()},
            headers_to_suppress=set(self.headers_to_suppress),
        )

    def build_url(self) -> str:
        url = self.url
        qs = encode_values(self.query)
        if qs:
            url += ("&" if "?" in url else "?") + qs
        return url

    def set_header(self, name: str, values: str | Sequence[str]) -> None:
        self.headers[name] = [values] if isinstance(values, str) else list(values)

    def remove_header(self, name: str) -> None:
        """Drop every case variant of ``name``."""
        for key in [k for k in self.headers if k.lower() == name.lower()]:
            del self.headers[key]


DEFAULT_OPTIONS = ReqOptions()
"""Template for builders created without options. Copied, never mutated."""


def _merge_multi(target: Mapping[str, list[str]], source: Mapping[str, list[str]]) -> dict[str, list[str]]:
    merged = {k: list(v) for k, v in source.items()}
    merged.update({k: list(v) for k, v in target.items()})
    return merged


def merge_options(target: ReqOptions | None, source: ReqOptions | None) -> ReqOptions:
    """Overlay ``target`` (call level) on ``source`` (template).

    Identity fields and headers from ``target`` win; every optional field
    is filled from ``source`` only when ``target`` left it unset. Neither
    argument is modified.
    """
    if target is None:
        return source.copy() if source is not None else ReqOptions()
    if source is None:
        return target.copy()

    merged = target.copy()
    if not merged.method:
        merged.method = source.method
    if not merged.url:
        merged.url = source.url
    if merged.follow_redirects is None:
        merged.follow_redirects = source.follow_redirects
    if merged.disable_connection_reuse is None:
        merged.disable_connection_reuse = source.disable_connection_reuse
    if merged.proxy is None:
        merged.proxy = source.proxy
    if merged.cookie_jar is None:
        merged.cookie_jar = source.cookie_jar

    merged.headers = _merge_multi(target.headers, source.headers)

    if not merged.headers_to_suppress:
        merged.headers_to_suppress = set(source.headers_to_suppress)
    if not merged.query:
        merged.query = {k: list(v) for k, v in source.query.items()}
    if merged.body is None:
        merged.body = source.body
    if not merged.timeout:
        merged.timeout = source.timeout
    return merged
