"""Connection dialing.

``StandardDialer`` resolves the target host and tries each address in
order, reporting DNS and connect phases to the hop's tracker.
``PreferIPv6Dialer`` wraps it: when IPv6 is preferred it first tries the
host's IPv6 addresses explicitly, and always falls back to the standard
dual-stack dial, so a missing IPv6 path never fails a request by itself.

Both implement ``dial(network, address, tracker)`` where *network* is
``"tcp"``, ``"tcp4"`` or ``"tcp6"`` and *address* is ``host:port``.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import TYPE_CHECKING, Iterable, Optional, Union

import dns.exception
import httpcore

from hoptrace.config import DIAL_TIMEOUT
from hoptrace.errors import AllResolversFailed, DialError, HopTraceError
from hoptrace.resolver import RotatingResolver, SystemResolver

if TYPE_CHECKING:
    from hoptrace.tracker import PhaseTracker

logger = logging.getLogger(__name__)

Resolver = Union[RotatingResolver, SystemResolver]

_FAMILIES = {
    "tcp": socket.AF_UNSPEC,
    "tcp4": socket.AF_INET,
    "tcp6": socket.AF_INET6,
}

_CONNECT_ERRORS = (httpcore.ConnectError, httpcore.ConnectTimeout, OSError)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def split_host_port(address: str) -> tuple[str, int]:
    """Split ``host:port`` or ``[v6addr]:port``."""
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"invalid address {address!r}")
        port = rest[1:]
    else:
        host, sep, port = address.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"missing port in address {address!r}")
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None


def join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def host_port_for(scheme: str, host: str, port: Optional[int] = None) -> str:
    """``host:port`` of a URL, filling in the scheme's default port."""
    if port is None:
        port = _DEFAULT_PORTS.get(scheme)
        if port is None:
            return host
    return join_host_port(host, port)


def _ip_version(host: str) -> Optional[int]:
    try:
        return ipaddress.ip_address(host).version
    except ValueError:
        return None


class StandardDialer:
    """Resolve-then-connect dialer on top of an httpcore network backend."""

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        backend: Optional[httpcore.AsyncNetworkBackend] = None,
        timeout: float = DIAL_TIMEOUT,
    ):
        self.resolver = resolver or SystemResolver()
        self._backend = backend or httpcore.AnyIOBackend()
        self.timeout = timeout

    async def lookup(self, host: str, family: int, tracker: PhaseTracker) -> list[str]:
        """Resolve *host*, reporting the DNS phase.  IP literals skip DNS."""
        version = _ip_version(host)
        if version is not None:
            if (family == socket.AF_INET and version != 4) or (family == socket.AF_INET6 and version != 6):
                return []
            return [host]

        tracker.dns_start(host)
        try:
            addresses = await self.resolver.lookup(host, family)
        except (AllResolversFailed, dns.exception.DNSException, OSError) as exc:
            tracker.dns_done(error=exc)
            raise
        tracker.dns_done(addresses)
        return addresses

    async def dial(
        self,
        network: str,
        address: str,
        tracker: PhaseTracker,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable] = None,
    ) -> httpcore.AsyncNetworkStream:
        if network not in _FAMILIES:
            raise DialError(address, ValueError(f"unsupported network {network!r}"))
        try:
            host, port = split_host_port(address)
        except ValueError as exc:
            raise DialError(address, exc) from exc

        try:
            addresses = await self.lookup(host, _FAMILIES[network], tracker)
        except AllResolversFailed:
            raise
        except (dns.exception.DNSException, OSError) as exc:
            raise DialError(address, exc) from exc
        if not addresses:
            raise DialError(address, OSError(f"no {network} addresses for {host}"))

        last_error: Optional[BaseException] = None
        for ip in addresses:
            target = join_host_port(ip, port)
            tracker.connect_start(network, target)
            try:
                stream = await self._backend.connect_tcp(
                    ip,
                    port,
                    timeout=timeout if timeout is not None else self.timeout,
                    socket_options=socket_options,
                )
            except _CONNECT_ERRORS as exc:
                tracker.connect_done(network, target, exc)
                last_error = exc
                continue
            tracker.connect_done(network, target)
            return stream

        raise DialError(address, last_error)


class PreferIPv6Dialer:
    """Dialer strategy that tries IPv6 first when asked to.

    With the preference off every dial goes straight to the wrapped
    dialer.  With it on, the host's AAAA addresses are dialed one by one
    over ``tcp6``; if none resolve or none connect, the original address
    is dialed with the wrapped dialer's default behavior.
    """

    def __init__(self, dialer: StandardDialer, prefer_ipv6: bool = False):
        self.dialer = dialer
        self.prefer_ipv6 = prefer_ipv6

    async def dial(
        self,
        network: str,
        address: str,
        tracker: PhaseTracker,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable] = None,
    ) -> httpcore.AsyncNetworkStream:
        if self.prefer_ipv6:
            stream = await self._dial_ipv6(address, tracker, timeout, socket_options)
            if stream is not None:
                return stream
        return await self.dialer.dial(network, address, tracker, timeout, socket_options)

    async def _dial_ipv6(
        self,
        address: str,
        tracker: PhaseTracker,
        timeout: Optional[float],
        socket_options: Optional[Iterable],
    ) -> Optional[httpcore.AsyncNetworkStream]:
        try:
            host, port = split_host_port(address)
        except ValueError as exc:
            raise DialError(address, exc) from exc

        try:
            ips = await self.dialer.lookup(host, socket.AF_INET6, tracker)
        except (HopTraceError, dns.exception.DNSException, OSError) as exc:
            logger.debug("IPv6 lookup for %s failed (%s), using default dial", host, exc)
            return None
        if not ips:
            logger.debug("No IPv6 addresses for %s, using default dial", host)
            return None

        for ip in ips:
            if _ip_version(ip) != 6:
                continue
            try:
                return await self.dialer.dial("tcp6", join_host_port(ip, port), tracker, timeout, socket_options)
            except DialError as exc:
                logger.debug("IPv6 dial to %s failed: %s", ip, exc)

        logger.debug("All IPv6 attempts for %s failed, using default dial", host)
        return None
