"""Per-hop phase timing.

A ``PhaseTracker`` listens to the connection-lifecycle events of exactly
one hop and fills in that hop's ``Timing``.  Each transition updates one
field and/or appends one trace message:

    get_conn -> dns_start -> dns_done -> connect_start -> connect_done
             -> tls_handshake_start -> tls_handshake_done
             -> got_conn -> got_first_response_byte -> body_done

DNS and connect transitions are driven by the network backend; TLS,
connection-obtained and first-byte transitions arrive through httpcore's
``trace`` request extension (see ``__call__``).  The tracker never raises:
failures are recorded and left to the transport to surface.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from hoptrace.export import format_duration
from hoptrace.models import Timing
from hoptrace.resolver import read_system_nameservers
from hoptrace.tracelog import TraceLog

logger = logging.getLogger(__name__)

# httpcore trace events that mean the request is about to go out on a
# connection, i.e. the connection has been obtained.
_CONNECTION_READY_EVENTS = frozenset({
    "http11.send_request_headers.started",
    "http2.send_connection_init.started",
    "http2.send_request_headers.started",
})

_FIRST_BYTE_EVENTS = frozenset({
    "http11.receive_response_headers.complete",
    "http2.receive_response_headers.complete",
})


def _extract_tls_version(stream: object) -> Optional[str]:
    """Best-effort TLS version from an httpcore network stream."""
    get_extra_info = getattr(stream, "get_extra_info", None)
    if get_extra_info is None:
        return None
    ssl_obj = get_extra_info("ssl_object")
    if ssl_obj is not None:
        return ssl_obj.version()
    return None


class PhaseTracker:
    """Converts lifecycle callbacks for one hop into duration measurements."""

    def __init__(
        self,
        timing: Timing,
        log: TraceLog,
        *,
        custom_resolver: bool = False,
        idle_since: Optional[int] = None,
        clock: Callable[[], int] = time.perf_counter_ns,
        nameservers: Callable[[], list[str]] = read_system_nameservers,
    ):
        self.timing = timing
        self._log = log
        self._custom_resolver = custom_resolver
        self._idle_since = idle_since
        self._clock = clock
        self._nameservers = nameservers

        self._get_conn_at: Optional[int] = None
        self._dns_at: Optional[int] = None
        self._connect_at: Optional[int] = None
        self._tls_at: Optional[int] = None

        self.dialed = False
        self.connection_obtained = False
        self.dns_error: Optional[BaseException] = None
        self.connect_error: Optional[BaseException] = None
        self.tls_error: Optional[BaseException] = None
        self.tls_version: Optional[str] = None

    def _since(self, ref: Optional[int]) -> int:
        if ref is None:
            return 0
        return self._clock() - ref

    # -- transitions -----------------------------------------------------

    def get_conn(self, host_port: str) -> None:
        self._get_conn_at = self._clock()
        self._log.append(f"Getting connection for {host_port}")

    def dns_start(self, host: str) -> None:
        self._dns_at = self._clock()
        if not self._custom_resolver:
            servers = self._nameservers()
            if servers:
                self._log.append(f"Using system DNS servers: {', '.join(servers)}")
        self._log.append(f"DNS lookup starting for {host}")

    def dns_done(self, addresses: Optional[list[str]] = None, error: Optional[BaseException] = None) -> None:
        self.timing.dns_lookup = self._since(self._dns_at)
        if error is not None:
            # The dial layer reports the failure.
            self.dns_error = error
            logger.debug("DNS lookup failed: %s", error)
        else:
            logger.debug("DNS lookup returned %s", addresses)

    def connect_start(self, network: str, address: str) -> None:
        self.dialed = True
        self._connect_at = self._clock()
        self._log.append(f"Connection attempt to {address}")

    def connect_done(self, network: str, address: str, error: Optional[BaseException] = None) -> None:
        self.timing.tcp_connection = self._since(self._connect_at)
        if error is not None:
            self.connect_error = error
            logger.debug("Connect to %s over %s failed: %s", address, network, error)

    def tls_handshake_start(self) -> None:
        self._tls_at = self._clock()
        self._log.append("TLS handshake starting")

    def tls_handshake_done(self, tls_version: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        self.timing.tls_handshake = self._since(self._tls_at)
        if error is not None:
            self.tls_error = error
            self._log.append(f"TLS handshake failed: {error}")
            return
        self.tls_version = tls_version
        if tls_version:
            self._log.append(f"TLS handshake completed ({tls_version})")
        else:
            self._log.append("TLS handshake completed")

    def got_conn(self, reused: bool, was_idle: bool = False, idle_time: int = 0) -> None:
        self.connection_obtained = True
        self._log.append(
            f"Got connection: reused={str(reused).lower()}, "
            f"was_idle={str(was_idle).lower()}, idle_time={format_duration(idle_time)}"
        )
        self.timing.reused_connection = reused
        if reused:
            self.timing.dns_lookup = 0
            self.timing.tcp_connection = 0
            self.timing.tls_handshake = 0

    def got_first_response_byte(self) -> None:
        self.timing.server_processing = self._since(self._get_conn_at)
        self._log.append("Received first response byte")

    def body_done(self, body_start: int, hop_start: int) -> None:
        """Called by the caller once the response body is fully drained."""
        now = self._clock()
        self.timing.content_transfer = now - body_start
        self.timing.total = now - hop_start

    # -- httpcore trace extension ---------------------------------------

    async def __call__(self, event_name: str, info: dict[str, Any]) -> None:
        if event_name == "connection.start_tls.started":
            self.tls_handshake_start()
        elif event_name == "connection.start_tls.complete":
            self.tls_handshake_done(tls_version=_extract_tls_version(info.get("return_value")))
        elif event_name == "connection.start_tls.failed":
            self.tls_handshake_done(error=info.get("exception"))
        elif event_name in _CONNECTION_READY_EVENTS:
            if not self.connection_obtained:
                self._connection_ready()
        elif event_name in _FIRST_BYTE_EVENTS:
            self.got_first_response_byte()

    def _connection_ready(self) -> None:
        # No dial for this hop means the pool handed back a kept-alive connection.
        reused = not self.dialed
        idle_time = 0
        if reused and self._idle_since is not None:
            idle_time = self._clock() - self._idle_since
        self.got_conn(reused=reused, was_idle=reused, idle_time=idle_time)
