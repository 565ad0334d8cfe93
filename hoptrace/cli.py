"""CLI entry point for hoptrace."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.logging import RichHandler

from hoptrace import __version__
from hoptrace.config import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_PROTOCOL,
    DEFAULT_TIMEOUT,
    MAX_MAX_REDIRECTS,
    MIN_MAX_REDIRECTS,
)
from hoptrace.models import TransactionConfig, TransactionResult


@click.command()
@click.argument("url")
@click.option("--http1", "protocol", flag_value="http1", help="Use HTTP/1.1 over TLS 1.2 or lower")
@click.option("--http1.1", "protocol", flag_value="http1.1", help="Use HTTP/1.1")
@click.option("--http2", "protocol", flag_value="http2", default=True, help="Use HTTP/2 when negotiated [default]")
@click.option("--no-keepalive", is_flag=True, help="Disable keep-alive connections")
@click.option("-t", "--timeout", default=DEFAULT_TIMEOUT, help="Overall timeout in seconds", show_default=True)
@click.option(
    "--max-redirects",
    default=DEFAULT_MAX_REDIRECTS,
    help=f"Maximum redirects ({MIN_MAX_REDIRECTS}-{MAX_MAX_REDIRECTS})",
    show_default=True,
)
@click.option("--dns-servers", default="", help="Comma-separated DNS servers (e.g., 8.8.8.8,8.8.4.4)")
@click.option("--ipv6", "prefer_ipv6", is_flag=True, help="Prefer IPv6 connections over IPv4")
@click.option("--table", "table_output", is_flag=True, help="Render a table instead of JSON")
@click.option("-o", "--output", default=None, help="Also write JSON results to file")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging on stderr")
@click.version_option(version=__version__)
def main(
    url: str,
    protocol: str | None,
    no_keepalive: bool,
    timeout: float,
    max_redirects: int,
    dns_servers: str,
    prefer_ipv6: bool,
    table_output: bool,
    output: str | None,
    verbose: bool,
) -> None:
    """hoptrace: HTTP latency breakdown across redirects.

    Times DNS, TCP connect, TLS handshake, time to first byte and content
    transfer for every hop of a request and prints a JSON report with the
    lifecycle trace.
    """
    from hoptrace.display import render_error

    _configure_logging(verbose)

    if not MIN_MAX_REDIRECTS <= max_redirects <= MAX_MAX_REDIRECTS:
        render_error(f"max-redirects must be between {MIN_MAX_REDIRECTS} and {MAX_MAX_REDIRECTS}")
        sys.exit(1)

    config = TransactionConfig(
        url=url,
        protocol=protocol or DEFAULT_PROTOCOL,
        no_keepalive=no_keepalive,
        timeout=timeout,
        max_redirects=max_redirects,
        dns_servers=[s.strip() for s in dns_servers.split(",") if s.strip()],
        prefer_ipv6=prefer_ipv6,
        table_output=table_output,
        output_file=output,
        verbose=verbose,
    )

    result = _run(config)
    _handle_output(result, config)


def _configure_logging(verbose: bool) -> None:
    from hoptrace.display import err_console

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _run(config: TransactionConfig) -> TransactionResult:
    from hoptrace.display import console, render_error
    from hoptrace.engine import measure
    from hoptrace.errors import HopTraceError

    try:
        return asyncio.run(measure(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)
    except HopTraceError as exc:
        render_error(f"Error making request: {exc}")
        sys.exit(1)


def _handle_output(result: TransactionResult, config: TransactionConfig) -> None:
    """Handle output rendering and export."""
    from hoptrace.display import console, render_result
    from hoptrace.export import export_json, write_to_file

    json_str = export_json(result)

    if config.table_output:
        render_result(result)
    else:
        click.echo(json_str)

    if config.output_file:
        write_to_file(json_str, config.output_file)
        if config.table_output:
            console.print(f"\n[dim]Results written to {config.output_file}[/dim]")


if __name__ == "__main__":
    main()
