"""Header and URL helpers shared by the assembler and the relays."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

import httpx

from .exceptions import ReqConfigError


SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "proxy-authorization",
    "set-cookie",
}

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

TARGET_SCHEMES = frozenset({"http", "https"})
PROXY_SCHEMES = frozenset({"http", "https", "socks5", "socks5h"})


def canonical_header_name(name: str) -> str:
    """Return ``name`` in canonical MIME form, e.g. ``x-trace`` -> ``X-Trace``."""
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.replace("_", "-").split("-"))


def sanitize_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Return header pairs with sensitive values redacted for logging."""
    redacted: list[tuple[str, str]] = []
    for key, value in headers:
        if key.lower() in SENSITIVE_HEADERS:
            redacted.append((key, "[REDACTED]"))
        else:
            redacted.append((key, value))
    return redacted


def normalize_multi(values: Mapping[str, str | Sequence[str]] | None) -> dict[str, list[str]]:
    """Copy a name -> value(s) mapping into name -> list of values."""
    if not values:
        return {}
    clean: dict[str, list[str]] = {}
    for key, value in values.items():
        if isinstance(value, (str, bytes)):
            clean[str(key)] = [value.decode() if isinstance(value, bytes) else value]
        else:
            clean[str(key)] = [str(v) for v in value]
    return clean


def _parse_url(url: str, *, kind: str, schemes: frozenset[str]) -> httpx.URL:
    if not url or "\x00" in url:
        raise ReqConfigError(f"Invalid {kind} URL: {url!r}")
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise ReqConfigError(f"Invalid {kind} URL: {url!r}", cause=exc) from exc
    if parsed.scheme not in schemes:
        raise ReqConfigError(f"Unsupported {kind} URL scheme: {parsed.scheme or '<none>'}")
    if not parsed.host:
        raise ReqConfigError(f"{kind.capitalize()} URL must include a host: {url!r}")
    return parsed


def validate_target_url(url: str) -> httpx.URL:
    """Parse the URL a request is sent to; raise ``ReqConfigError`` if unusable."""
    return _parse_url(url, kind="target", schemes=TARGET_SCHEMES)


def validate_proxy_url(url: str) -> httpx.URL:
    """Parse a proxy URL; raise ``ReqConfigError`` if unusable."""
    return _parse_url(url, kind="proxy", schemes=PROXY_SCHEMES)
