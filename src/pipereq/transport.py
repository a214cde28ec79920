"""The per-builder transport handle around :class:`httpx.Client`."""

from __future__ import annotations

import logging
import os
from http.cookiejar import CookieJar
from typing import Mapping

import httpx

from .headers import sanitize_headers


logger = logging.getLogger(__name__)


class HttpTransport:
    """Connection pool, proxy slot and per-exchange settings for one builder.

    Every exchange calls :meth:`configure` first, which resets proxy,
    cookies and timeout from scratch so nothing leaks between exchanges.
    Not safe for concurrent use; :meth:`spawn` gives an independent handle.
    """

    default_timeout = 30.0
    default_max_connections = 10
    default_keepalive_expiry = 30.0
    default_user_agent = "pipereq/0.1.0"

    def __init__(
        self,
        *,
        timeout: float | None = None,
        follow_redirects: bool = True,
        max_connections: int = default_max_connections,
        keepalive_expiry: float = default_keepalive_expiry,
        headers: Mapping[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
        trust_env: bool = True,
        timeout_env_var: str = "PIPEREQ_TIMEOUT",
    ) -> None:
        env_timeout = os.getenv(timeout_env_var)
        if timeout is None:
            timeout = float(env_timeout) if env_timeout else self.default_timeout
        if timeout <= 0:
            raise ValueError("timeout must be greater than 0")
        self.timeout = float(timeout)
        self.follow_redirects = follow_redirects
        self.max_connections = max_connections
        self.keepalive_expiry = keepalive_expiry
        self.headers = {"User-Agent": self.default_user_agent, "Accept-Encoding": "gzip"}
        if headers:
            self.headers.update({str(k): str(v) for k, v in headers.items()})
        self.trust_env = trust_env
        self._base_transport = transport
        self._client: httpx.Client | None = None
        self._proxy: str | None = None

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def proxy(self) -> str | None:
        return self._proxy

    def spawn(self) -> "HttpTransport":
        """A new handle with the same settings and its own client."""
        return HttpTransport(
            timeout=self.timeout,
            follow_redirects=self.follow_redirects,
            max_connections=self.max_connections,
            keepalive_expiry=self.keepalive_expiry,
            headers=self.headers,
            transport=self._base_transport,
            trust_env=self.trust_env,
        )

    def _build_client(self, proxy: str | None) -> httpx.Client:
        kwargs: dict[str, object] = {
            "timeout": self.timeout,
            "follow_redirects": self.follow_redirects,
            "headers": self.headers,
            "trust_env": self.trust_env,
            "limits": httpx.Limits(
                max_connections=self.max_connections,
                max_keepalive_connections=self.max_connections,
                keepalive_expiry=self.keepalive_expiry,
            ),
        }
        if self._base_transport is not None:
            kwargs["transport"] = self._base_transport
        if proxy is not None:
            kwargs["proxy"] = proxy
        return httpx.Client(**kwargs)

    def configure(
        self,
        *,
        proxy: str | None = None,
        cookie_jar: CookieJar | None = None,
        timeout: float = 0.0,
    ) -> httpx.Client:
        """Apply one exchange's settings and return the client to send with.

        A different proxy than last time means a new client; ``None`` falls
        back to environment proxies.
        """
        if self._client is None or proxy != self._proxy:
            self._release_client()
            self._client = self._build_client(proxy)
            self._proxy = proxy
        client = self._client
        client.cookies = cookie_jar if cookie_jar is not None else httpx.Cookies()
        client.timeout = timeout if timeout and timeout > 0 else self.timeout
        return client

    def send(self, request: httpx.Request, *, follow_redirects: bool | None = None) -> httpx.Response:
        """Send through the configured client, leaving the body unread."""
        if self._client is None:
            raise RuntimeError("configure() must be called before send()")
        logger.debug(
            "%s %s headers=%s",
            request.method,
            request.url,
            sanitize_headers(request.headers.multi_items()),
        )
        if follow_redirects is None:
            response = self._client.send(request, stream=True)
        else:
            response = self._client.send(request, stream=True, follow_redirects=follow_redirects)
        logger.debug("%s %s -> %d", request.method, request.url, response.status_code)
        return response

    def _release_client(self) -> None:
        # An injected transport belongs to the caller and may be shared with
        # spawned handles, so only clients over our own pool are closed.
        if self._client is not None and self._base_transport is None:
            self._client.close()
        self._client = None
        self._proxy = None

    def close(self) -> None:
        self._release_client()
