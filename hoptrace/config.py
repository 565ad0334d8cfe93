"""Constants and configuration for hoptrace."""

from hoptrace import __version__

# Default transaction settings
DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_REDIRECTS = 5
MIN_MAX_REDIRECTS = 2
MAX_MAX_REDIRECTS = 10

# Identical consecutive trace messages inside this window are dropped
TRACE_DEBOUNCE_NS = 10_000_000

# Dialing
DIAL_TIMEOUT = 30.0
DNS_PORT = 53

# Connection pool (mirrors a typical keep-alive client)
MAX_CONNECTIONS = 100
KEEPALIVE_EXPIRY = 90.0

# Informational only, never used for resolution
RESOLV_CONF = "/etc/resolv.conf"

DEFAULT_PROTOCOL = "http2"

USER_AGENT = f"hoptrace/{__version__}"

# Latency color thresholds per phase (milliseconds)
PHASE_THRESHOLDS = {
    "dns": {"fast": 5.0, "medium": 20.0},
    "tcp": {"fast": 10.0, "medium": 30.0},
    "tls": {"fast": 20.0, "medium": 50.0},
    "ttfb": {"fast": 30.0, "medium": 80.0},
    "transfer": {"fast": 20.0, "medium": 100.0},
    "total": {"fast": 50.0, "medium": 150.0},
}

PHASE_LABELS = {
    "dns": "DNS",
    "tcp": "TCP",
    "tls": "TLS",
    "ttfb": "TTFB",
    "transfer": "Transfer",
    "total": "Total",
}
