"""Transaction runner for hoptrace.

Issues one GET through the tracing transport and follows redirects by
hand so each hop gets its own timing:

    request -> [redirect -> collector.check_redirect -> request]* -> body

Every network operation awaits inside a single overall timeout.  Any
failure ends the transaction; partial results are not reported.

Public API:
    Transaction  -- per-transaction state and the request loop
    measure      -- run one transaction under the configured timeout
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Union

import httpx

from hoptrace.config import USER_AGENT
from hoptrace.dialer import PreferIPv6Dialer, StandardDialer
from hoptrace.errors import BodyReadError, HopTraceError, TransactionTimeout
from hoptrace.models import Timing, TransactionConfig, TransactionResult
from hoptrace.redirects import RedirectCollector
from hoptrace.resolver import RotatingResolver, SystemResolver, read_system_nameservers
from hoptrace.tracelog import TraceLog
from hoptrace.tracker import PhaseTracker
from hoptrace.transport import TracingNetworkBackend, TracingTransport

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Default to plain HTTP when the target has no scheme."""
    if not url.startswith(("http://", "https://")):
        return "http://" + url
    return url


class Transaction:
    """State for one traced request and its redirect chain.

    Nothing here is shared between transactions: the trace log, redirect
    collector and resolver rotation all live on the instance.
    """

    def __init__(
        self,
        config: TransactionConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        dialer: Optional[Union[PreferIPv6Dialer, StandardDialer]] = None,
        clock: Callable[[], int] = time.perf_counter_ns,
        nameservers: Callable[[], list[str]] = read_system_nameservers,
    ):
        self.config = config
        self._clock = clock
        self._nameservers = nameservers
        self.log = TraceLog(clock=clock)

        if config.dns_servers:
            self.resolver: Union[RotatingResolver, SystemResolver] = RotatingResolver(
                config.dns_servers, trace=self.log,
            )
        else:
            self.resolver = SystemResolver()

        self.dialer = dialer or PreferIPv6Dialer(StandardDialer(self.resolver), config.prefer_ipv6)
        self.collector = RedirectCollector(
            config.max_redirects, self.log, self._new_tracker, clock=clock,
        )
        self._transport = transport or TracingTransport(
            TracingNetworkBackend(self.dialer, self.collector),
            protocol=config.protocol,
            keepalive=not config.no_keepalive,
        )

    def _new_tracker(self, timing: Timing, idle_since: Optional[int]) -> PhaseTracker:
        return PhaseTracker(
            timing,
            self.log,
            custom_resolver=self.config.custom_dns,
            idle_since=idle_since,
            clock=self._clock,
            nameservers=self._nameservers,
        )

    async def run(self) -> TransactionResult:
        url = normalize_url(self.config.url)
        headers = {"User-Agent": USER_AGENT, "Accept-Encoding": "identity"}

        async with httpx.AsyncClient(
            transport=self._transport,
            headers=headers,
            timeout=httpx.Timeout(self.config.timeout),
            follow_redirects=False,
        ) as client:
            try:
                request = client.build_request("GET", url)
            except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
                raise HopTraceError(f"invalid URL {url!r}: {exc}") from exc

            self.collector.start(request)
            via: list[httpx.Request] = []

            while True:
                response = await self._send(client, request)
                via.append(request)
                next_request = response.next_request
                if next_request is None:
                    break

                # Drain so a kept-alive connection can serve the next hop.
                await self._read_body(response)
                self.collector.check_redirect(next_request, via, response)
                request = next_request

            hop = self.collector.hop
            body_start = self._clock()
            await self._read_body(response)
            hop.tracker.body_done(body_start, hop.start)

        return TransactionResult(
            url=str(response.url),
            http_protocol=response.http_version,
            status_code=response.status_code,
            status=f"{response.status_code} {response.reason_phrase}".strip(),
            timing=hop.timing,
            final_hop_start=hop.start,
            redirects=list(self.collector.redirects),
            trace_messages=self.log.entries,
        )

    async def _send(self, client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
        try:
            return await client.send(request, stream=True, follow_redirects=False)
        except HopTraceError:
            raise
        except httpx.HTTPError as exc:
            raise HopTraceError(f"request to {request.url} failed: {exc}") from exc

    async def _read_body(self, response: httpx.Response) -> None:
        try:
            async for _ in response.aiter_bytes():
                pass
        except httpx.HTTPError as exc:
            raise BodyReadError(f"error reading response body from {response.url}: {exc}") from exc
        finally:
            await response.aclose()


async def measure(
    config: TransactionConfig,
    transaction: Optional[Transaction] = None,
) -> TransactionResult:
    """Run one transaction, bounded by ``config.timeout`` end to end."""
    transaction = transaction or Transaction(config)
    try:
        return await asyncio.wait_for(transaction.run(), timeout=config.timeout)
    except asyncio.TimeoutError:
        logger.debug("Transaction to %s exceeded %.1fs", config.url, config.timeout)
        raise TransactionTimeout(config.timeout) from None
