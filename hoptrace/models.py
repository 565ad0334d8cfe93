"""Data models for hoptrace.

All durations are integer nanoseconds from a monotonic clock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from hoptrace.config import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_PROTOCOL,
    DEFAULT_TIMEOUT,
)

if TYPE_CHECKING:
    from hoptrace.tracker import PhaseTracker


@dataclass
class Timing:
    """Per-phase timing for a single hop.

    A reused connection skipped DNS, connect and TLS, so those three read
    as zero whenever ``reused_connection`` is set.
    """

    dns_lookup: int = 0
    tcp_connection: int = 0
    tls_handshake: int = 0
    server_processing: int = 0  # time to first response byte
    content_transfer: int = 0
    total: int = 0
    reused_connection: bool = False

    @property
    def connection(self) -> str:
        return "reused" if self.reused_connection else "new"


@dataclass(frozen=True)
class TraceMessage:
    """One lifecycle event line."""

    text: str
    at: int  # monotonic ns, used for dedup
    timestamp: datetime

    def format(self) -> str:
        return f"[{self.timestamp:%H:%M:%S}.{self.timestamp.microsecond // 1000:03d}] {self.text}"

    def __str__(self) -> str:
        return self.format()


@dataclass(frozen=True)
class RedirectInfo:
    """A completed hop that ended in a redirect. Never mutated."""

    url: str
    status_code: int
    status: str
    start_time: int
    end_time: int
    timing: Timing
    trace_messages: tuple[TraceMessage, ...] = ()

    @property
    def elapsed(self) -> int:
        return self.end_time - self.start_time


@dataclass
class HopContext:
    """Binding of the in-flight hop: start reference plus its Timing.

    Replaced wholesale when a redirect starts the next hop.
    """

    start: int
    timing: Timing
    tracker: PhaseTracker


@dataclass
class TransactionConfig:
    """Configuration for a single traced transaction."""

    url: str = ""
    protocol: str = DEFAULT_PROTOCOL  # http1 | http1.1 | http2
    no_keepalive: bool = False
    timeout: float = DEFAULT_TIMEOUT
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    dns_servers: list[str] = field(default_factory=list)
    prefer_ipv6: bool = False
    table_output: bool = False
    output_file: Optional[str] = None
    verbose: bool = False

    @property
    def custom_dns(self) -> bool:
        return bool(self.dns_servers)


@dataclass
class TransactionResult:
    """Everything the reporting side needs once the final response is read."""

    url: str
    http_protocol: str
    status_code: int
    status: str
    timing: Timing
    final_hop_start: int
    redirects: list[RedirectInfo] = field(default_factory=list)
    trace_messages: list[TraceMessage] = field(default_factory=list)

    @property
    def hop_timings(self) -> list[Timing]:
        return [r.timing for r in self.redirects] + [self.timing]

    @property
    def total_dns(self) -> int:
        return sum(t.dns_lookup for t in self.hop_timings if not t.reused_connection)

    @property
    def total_tcp(self) -> int:
        return sum(t.tcp_connection for t in self.hop_timings if not t.reused_connection)

    @property
    def total_tls(self) -> int:
        return sum(t.tls_handshake for t in self.hop_timings if not t.reused_connection)

    @property
    def total_redirect_time(self) -> int:
        return sum(r.elapsed for r in self.redirects)

    @property
    def total_response_time(self) -> int:
        if not self.redirects:
            return self.timing.total
        return self.timing.total + (self.final_hop_start - self.redirects[0].start_time)
