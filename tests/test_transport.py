import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace

import pytest

from hoptrace.engine import Transaction
from hoptrace.errors import RedirectLimitExceeded
from hoptrace.models import HopContext, Timing, TransactionConfig
from hoptrace.tracelog import TraceLog
from hoptrace.tracker import PhaseTracker
from hoptrace.transport import TracingNetworkBackend, TracingTransport, build_ssl_context


class ChainHandler(BaseHTTPRequestHandler):
    """Keep-alive server for /0 -> /1 -> /2, which answers 200."""

    protocol_version = "HTTP/1.1"
    last_hop = 2

    def do_GET(self) -> None:
        index = int(self.path.strip("/") or 0)
        if index < self.last_hop:
            self.send_response(302)
            self.send_header("Location", f"/{index + 1}")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        body = b"done"
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args) -> None:
        pass


@pytest.fixture
def chain_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), ChainHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://localhost:{server.server_address[1]}/0"
    finally:
        server.shutdown()
        server.server_close()


def _run(url: str, **overrides) -> Transaction:
    config = TransactionConfig(url=url, timeout=10, **overrides)
    return Transaction(config, nameservers=lambda: [])


@pytest.mark.asyncio
async def test_keepalive_chain_reuses_connection(chain_url) -> None:
    result = await _run(chain_url).run()

    assert result.status_code == 200
    assert len(result.redirects) == 2

    first = result.redirects[0].timing
    assert first.reused_connection is False
    assert first.dns_lookup > 0
    assert first.tcp_connection > 0

    for timing in (result.redirects[1].timing, result.timing):
        assert timing.reused_connection is True
        assert (timing.dns_lookup, timing.tcp_connection, timing.tls_handshake) == (0, 0, 0)

    texts = [m.text for m in result.trace_messages]
    port = chain_url.rsplit(":", 1)[1].split("/")[0]
    assert texts[0] == f"Getting connection for localhost:{port}"
    assert "DNS lookup starting for localhost" in texts
    assert sum(t.startswith("Got connection: reused=true, was_idle=true") for t in texts) == 2
    assert result.timing.server_processing > 0
    assert result.timing.total >= result.timing.content_transfer


@pytest.mark.asyncio
async def test_no_keepalive_dials_every_hop(chain_url) -> None:
    result = await _run(chain_url, no_keepalive=True).run()

    hops = [r.timing for r in result.redirects] + [result.timing]
    assert len(hops) == 3
    for timing in hops:
        assert timing.reused_connection is False
        assert timing.tcp_connection > 0


@pytest.mark.asyncio
async def test_limit_reached_against_live_server(chain_url) -> None:
    transaction = _run(chain_url, max_redirects=2)

    with pytest.raises(RedirectLimitExceeded):
        await transaction.run()

    assert len(transaction.collector.redirects) == 2


class RecordingDialer:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def dial(self, network, address, tracker, timeout=None, socket_options=None):
        self.calls.append((network, address, tracker, timeout))
        return "stream"


@pytest.mark.asyncio
async def test_backend_dials_through_current_hop_tracker() -> None:
    tracker = PhaseTracker(Timing(), TraceLog(), nameservers=lambda: [])
    collector = SimpleNamespace(hop=HopContext(start=0, timing=tracker.timing, tracker=tracker))
    dialer = RecordingDialer()
    backend = TracingNetworkBackend(dialer, collector)

    assert await backend.connect_tcp("2001:db8::1", 443, timeout=5.0) == "stream"
    assert dialer.calls == [("tcp", "[2001:db8::1]:443", tracker, 5.0)]

    collector.hop = None
    with pytest.raises(RuntimeError):
        await backend.connect_tcp("example.com", 80)


def test_ssl_context_tls_bounds_per_protocol() -> None:
    assert build_ssl_context("http1").maximum_version == ssl.TLSVersion.TLSv1_2
    assert build_ssl_context("http2").minimum_version == ssl.TLSVersion.TLSv1_2

    context = build_ssl_context("http1.1")
    assert context.verify_mode == ssl.CERT_REQUIRED
    assert context.maximum_version == ssl.TLSVersion.MAXIMUM_SUPPORTED


def test_transport_pool_uses_tracing_backend() -> None:
    backend = TracingNetworkBackend(RecordingDialer(), SimpleNamespace(hop=None))

    kept = TracingTransport(backend, keepalive=True)
    closed = TracingTransport(backend, protocol="http1.1", keepalive=False)

    assert kept._pool._network_backend is backend
    assert kept._pool._max_keepalive_connections == 100
    assert closed._pool._max_keepalive_connections == 0
