"""httpx transport wired for phase tracing.

httpcore opens connections through a network backend and reports TLS and
request/response progress through the ``trace`` request extension.  The
backend here routes every TCP open through the dialer strategy with the
current hop's tracker, so DNS and connect phases are visible too.
"""

from __future__ import annotations

import logging
import ssl
from typing import TYPE_CHECKING, Iterable, Optional, Union

import httpcore
import httpx

from hoptrace.config import DEFAULT_PROTOCOL, KEEPALIVE_EXPIRY, MAX_CONNECTIONS
from hoptrace.dialer import PreferIPv6Dialer, StandardDialer, host_port_for, join_host_port
from hoptrace.tracker import PhaseTracker

if TYPE_CHECKING:
    from hoptrace.redirects import RedirectCollector

logger = logging.getLogger(__name__)

Dialer = Union[PreferIPv6Dialer, StandardDialer]


def build_ssl_context(protocol: str = DEFAULT_PROTOCOL) -> ssl.SSLContext:
    """Certificate-validating context with protocol-specific TLS bounds.

    ``http1`` caps TLS at 1.2; ``http2`` requires at least TLS 1.2.
    ALPN is set by httpcore per connection.
    """
    ctx = ssl.create_default_context()
    if protocol == "http1":
        ctx.maximum_version = ssl.TLSVersion.TLSv1_2
    elif protocol == "http2":
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    return ctx


class TracingNetworkBackend(httpcore.AsyncNetworkBackend):
    """Network backend that dials via a dialer strategy.

    The collector supplies the hop in flight; its tracker receives the DNS
    and connect transitions of whatever connection the pool opens.
    """

    def __init__(
        self,
        dialer: Dialer,
        collector: RedirectCollector,
        backend: Optional[httpcore.AsyncNetworkBackend] = None,
    ):
        self._dialer = dialer
        self._collector = collector
        self._backend = backend or httpcore.AnyIOBackend()

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable] = None,
    ) -> httpcore.AsyncNetworkStream:
        hop = self._collector.hop
        if hop is None:
            raise RuntimeError("connection requested outside of a traced hop")
        return await self._dialer.dial(
            "tcp",
            join_host_port(host, port),
            hop.tracker,
            timeout=timeout,
            socket_options=socket_options,
        )

    async def connect_unix_socket(
        self,
        path: str,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable] = None,
    ) -> httpcore.AsyncNetworkStream:
        return await self._backend.connect_unix_socket(path, timeout=timeout, socket_options=socket_options)

    async def sleep(self, seconds: float) -> None:
        await self._backend.sleep(seconds)


class TracingTransport(httpx.AsyncHTTPTransport):
    """Transport whose connection pool uses a ``TracingNetworkBackend``.

    Also marks the "acquiring connection" transition on the request's
    tracker before the pool is asked for a connection.
    """

    def __init__(
        self,
        network_backend: httpcore.AsyncNetworkBackend,
        protocol: str = DEFAULT_PROTOCOL,
        keepalive: bool = True,
    ):
        ssl_context = build_ssl_context(protocol)
        http2 = protocol == "http2"
        limits = httpx.Limits(
            max_connections=MAX_CONNECTIONS,
            max_keepalive_connections=MAX_CONNECTIONS if keepalive else 0,
            keepalive_expiry=KEEPALIVE_EXPIRY,
        )
        # The base class cannot take a network backend, so its pool is
        # replaced below and never used.
        super().__init__(verify=ssl_context, http1=True, http2=http2, limits=limits)
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=ssl_context,
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=True,
            http2=http2,
            network_backend=network_backend,
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        tracker = request.extensions.get("trace")
        if isinstance(tracker, PhaseTracker):
            url = request.url
            tracker.get_conn(host_port_for(url.scheme, url.host, url.port))
        return await super().handle_async_request(request)
