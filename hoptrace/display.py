"""Rich terminal output for hoptrace."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from hoptrace.config import PHASE_LABELS, PHASE_THRESHOLDS
from hoptrace.export import format_duration
from hoptrace.models import Timing, TransactionResult

console = Console()
err_console = Console(stderr=True)


def _color_for_ms(value: float, phase: str = "total") -> str:
    """Return a Rich color name based on latency value and phase thresholds."""
    thresholds = PHASE_THRESHOLDS.get(phase, PHASE_THRESHOLDS["total"])
    if value <= thresholds["fast"]:
        return "green"
    elif value <= thresholds["medium"]:
        return "yellow"
    return "red"


def _fmt_ns(value: int, phase: str = "total") -> Text:
    return Text(format_duration(value), style=_color_for_ms(value / 1e6, phase))


def _skipped() -> Text:
    return Text("\u2014", style="dim")


def _phase_cells(timing: Timing) -> list[Text]:
    if timing.reused_connection:
        return [_skipped(), _skipped(), _skipped()]
    return [
        _fmt_ns(timing.dns_lookup, "dns"),
        _fmt_ns(timing.tcp_connection, "tcp"),
        _fmt_ns(timing.tls_handshake, "tls"),
    ]


def _build_hop_table(result: TransactionResult) -> Table:
    table = Table(
        show_header=True,
        border_style="bright_black",
        expand=False,
        header_style="bold",
        title="[bold]Hops[/bold]",
        title_style="",
    )
    table.add_column("#", justify="right", width=3, style="dim")
    table.add_column("URL", style="bold", overflow="fold")
    table.add_column("Status")
    table.add_column("Conn")
    for phase in ("dns", "tcp", "tls", "ttfb", "transfer", "total"):
        table.add_column(PHASE_LABELS[phase], justify="right")

    for index, redirect in enumerate(result.redirects, 1):
        t = redirect.timing
        table.add_row(
            str(index),
            Text(redirect.url),
            Text(redirect.status, style="cyan"),
            t.connection,
            *_phase_cells(t),
            _fmt_ns(t.server_processing, "ttfb"),
            _skipped(),
            _fmt_ns(redirect.elapsed, "total"),
        )

    t = result.timing
    status_style = "green" if result.status_code < 400 else "red"
    table.add_row(
        str(len(result.redirects) + 1),
        Text(result.url),
        Text(result.status, style=status_style),
        t.connection,
        *_phase_cells(t),
        _fmt_ns(t.server_processing, "ttfb"),
        _fmt_ns(t.content_transfer, "transfer"),
        _fmt_ns(t.total, "total"),
    )
    return table


def render_result(result: TransactionResult, show_trace: bool = True) -> None:
    """Render a transaction: hop table, totals and the trace log."""
    console.print(
        f"[bold]{escape(result.url)}[/bold]  [dim]{result.http_protocol}[/dim]  "
        f"{result.status}  [dim]({result.timing.connection} connection)[/dim]"
    )
    console.print(_build_hop_table(result))

    totals = Text()
    totals.append("Totals: ", style="bold")
    totals.append("DNS ")
    totals.append_text(_fmt_ns(result.total_dns, "dns"))
    totals.append("  TCP ")
    totals.append_text(_fmt_ns(result.total_tcp, "tcp"))
    totals.append("  TLS ")
    totals.append_text(_fmt_ns(result.total_tls, "tls"))
    totals.append("  Response ")
    totals.append_text(_fmt_ns(result.total_response_time, "total"))
    if result.redirects:
        totals.append(f"  ({len(result.redirects)} redirects, ", style="dim")
        totals.append(f"{format_duration(result.total_redirect_time)})", style="dim")
    console.print(totals)

    if show_trace and result.trace_messages:
        console.print("\n[bold]Trace[/bold]")
        for message in result.trace_messages:
            console.print(Text(f"  {message.format()}", style="dim"))


def render_error(message: str) -> None:
    """Display an error message."""
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}")
