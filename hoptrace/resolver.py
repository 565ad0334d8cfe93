"""DNS resolution strategies used by the dialer.

``RotatingResolver`` queries a user-supplied list of DNS servers through
dnspython, one server per attempt, rotating round-robin across the whole
run so consecutive lookups start on different servers.  ``SystemResolver``
defers to the platform's ``getaddrinfo``.
"""

from __future__ import annotations

import logging
import socket
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import anyio
import dns.asyncresolver
import dns.exception
import dns.resolver

from hoptrace.config import DIAL_TIMEOUT, DNS_PORT, RESOLV_CONF
from hoptrace.errors import AllResolversFailed

if TYPE_CHECKING:
    from hoptrace.tracelog import TraceLog

logger = logging.getLogger(__name__)

# (server, hostname, rdtype, timeout) -> list of address strings
QueryFunc = Callable[[str, str, str, float], Awaitable[list[str]]]

# Errors that mean the *server* failed, so the next one should be tried.
# Authoritative answers such as NXDOMAIN are not among them.
_SERVER_FAILURES = (dns.exception.Timeout, dns.resolver.NoNameservers, OSError)


def read_system_nameservers(path: str = RESOLV_CONF) -> list[str]:
    """Return the ``nameserver`` entries of a resolv.conf-style file.

    Best effort: an unreadable file yields an empty list.
    """
    servers: list[str] = []
    try:
        with open(path) as f:
            for line in f:
                fields = line.split()
                if len(fields) >= 2 and fields[0] == "nameserver":
                    servers.append(fields[1])
    except OSError:
        logger.debug("Could not read %s", path)
        return []
    return servers


def _rdtypes_for(family: int) -> list[str]:
    if family == socket.AF_INET:
        return ["A"]
    if family == socket.AF_INET6:
        return ["AAAA"]
    return ["A", "AAAA"]


async def _query_server(server: str, hostname: str, rdtype: str, timeout: float) -> list[str]:
    """Resolve *hostname* against a single DNS *server* via dnspython."""
    resolver = dns.asyncresolver.Resolver(configure=False)
    resolver.nameservers = [server]
    resolver.port = DNS_PORT
    resolver.lifetime = timeout
    try:
        answer = await resolver.resolve(hostname, rdtype)
    except dns.resolver.NoAnswer:
        return []
    return [str(rdata) for rdata in answer]


def _merge(addresses: list[str], found: list[str]) -> None:
    for addr in found:
        if addr not in addresses:
            addresses.append(addr)


class RotatingResolver:
    """Round-robin resolver over an ordered, non-empty list of DNS servers.

    Each query starts at the current rotation position and advances it
    whether or not the server answers.  A failing server hands over to the
    next one until every server has been tried once for this query.
    """

    def __init__(
        self,
        servers: list[str],
        timeout: float = DIAL_TIMEOUT,
        trace: Optional[TraceLog] = None,
        query: Optional[QueryFunc] = None,
    ):
        if not servers:
            raise ValueError("RotatingResolver needs at least one DNS server")
        self.servers = list(servers)
        self.position = 0
        self.timeout = timeout
        self._trace = trace
        self._query = query or _query_server

    async def query(self, hostname: str, rdtype: str) -> list[str]:
        last_error: Optional[BaseException] = None
        for _ in range(len(self.servers)):
            server = self.servers[self.position]
            self.position = (self.position + 1) % len(self.servers)

            if self._trace is not None:
                self._trace.append(f"Attempting DNS resolution using server: {server}")
            try:
                return await self._query(server, hostname, rdtype, self.timeout)
            except _SERVER_FAILURES as exc:
                logger.debug("DNS server %s failed for %s %s: %s", server, hostname, rdtype, exc)
                last_error = exc

        raise AllResolversFailed(self.servers, last_error)

    async def lookup(self, hostname: str, family: int = socket.AF_UNSPEC) -> list[str]:
        """Resolve *hostname* to addresses of the requested *family*.

        For a dual-stack lookup a failing second record type is tolerated
        as long as the first produced addresses.
        """
        addresses: list[str] = []
        for rdtype in _rdtypes_for(family):
            try:
                found = await self.query(hostname, rdtype)
            except AllResolversFailed:
                if addresses:
                    continue
                raise
            _merge(addresses, found)
        return addresses


class SystemResolver:
    """Resolve through the platform resolver (``getaddrinfo``)."""

    async def lookup(self, hostname: str, family: int = socket.AF_UNSPEC) -> list[str]:
        infos = await anyio.getaddrinfo(hostname, None, family=family, type=socket.SOCK_STREAM)
        addresses: list[str] = []
        _merge(addresses, [str(sockaddr[0]) for *_, sockaddr in infos])
        return addresses
