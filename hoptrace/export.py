"""JSON export for transaction results."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hoptrace.models import RedirectInfo, Timing, TransactionResult


def format_duration(ns: int) -> str:
    """Format nanoseconds as milliseconds with two decimals, e.g. ``12.34ms``."""
    return f"{ns / 1e6:.2f}ms"


def export_json(result: TransactionResult, indent: int = 2) -> str:
    """Export a transaction result as a JSON string."""
    data = build_export_dict(result)
    return json.dumps(data, indent=indent)


def write_to_file(content: str, filepath: str) -> None:
    """Write export content to a file."""
    with open(filepath, "w") as f:
        f.write(content)


def _connection_phases(timing: Timing) -> dict:
    # Phases that did not happen on a reused connection are left out.
    if timing.reused_connection:
        return {}
    return {
        "dns_lookup": format_duration(timing.dns_lookup),
        "tcp_connection": format_duration(timing.tcp_connection),
        "tls_handshake": format_duration(timing.tls_handshake),
    }


def _redirect_to_dict(redirect: RedirectInfo) -> dict:
    timing = _connection_phases(redirect.timing)
    timing["ttfb"] = format_duration(redirect.timing.server_processing)
    timing["total_time"] = format_duration(redirect.elapsed)
    return {
        "url": redirect.url,
        "status_code": redirect.status_code,
        "status": redirect.status,
        "connection": redirect.timing.connection,
        "timing": timing,
    }


def build_export_dict(result: TransactionResult) -> dict:
    """Build a serializable dictionary from a TransactionResult."""
    timing = _connection_phases(result.timing)
    timing["ttfb"] = format_duration(result.timing.server_processing)
    timing["ttlb"] = format_duration(result.timing.content_transfer)
    timing["total_time"] = format_duration(result.timing.total)

    data: dict = {
        "url": result.url,
        "http_protocol": result.http_protocol,
        "status_code": result.status_code,
        "status": result.status,
        "connection": result.timing.connection,
        "timing": timing,
    }

    if result.redirects:
        data["redirects"] = {
            "count": len(result.redirects),
            "total_time": format_duration(result.total_redirect_time),
            "chain": [_redirect_to_dict(r) for r in result.redirects],
        }

    data["totals"] = {
        "dns_lookups": format_duration(result.total_dns),
        "tcp_connections": format_duration(result.total_tcp),
        "tls_handshakes": format_duration(result.total_tls),
        "total_response_time": format_duration(result.total_response_time),
    }
    data["trace"] = {"messages": [m.format() for m in result.trace_messages]}

    return data
