"""Redirect chain collection.

The collector owns the hop boundaries of a transaction: it starts the
first hop, and each time a redirect is about to be followed it freezes
the finished hop into a ``RedirectInfo``, enforces the redirect limit,
and binds fresh timing instrumentation to the redirected request.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Optional, Sequence

import httpx

from hoptrace.errors import RedirectLimitExceeded
from hoptrace.models import HopContext, RedirectInfo, Timing
from hoptrace.tracelog import TraceLog
from hoptrace.tracker import PhaseTracker

logger = logging.getLogger(__name__)

# (timing, idle_since) -> tracker bound to that timing
TrackerFactory = Callable[[Timing, Optional[int]], PhaseTracker]


def attach_hop(request: httpx.Request, hop: HopContext) -> None:
    """Bind *hop*'s tracker to *request* as its httpcore trace callback."""
    # Redirect requests share the extensions dict of the request they came
    # from, so replace it rather than mutate it.
    request.extensions = {**request.extensions, "trace": hop.tracker}


class RedirectCollector:
    """Tracks hops and the ordered redirect chain of one transaction."""

    def __init__(
        self,
        max_redirects: int,
        log: TraceLog,
        tracker_factory: TrackerFactory,
        clock: Callable[[], int] = time.perf_counter_ns,
    ):
        self.max_redirects = max_redirects
        self.log = log
        self._tracker_factory = tracker_factory
        self._clock = clock
        self.redirects: list[RedirectInfo] = []
        self.hop: Optional[HopContext] = None

    def _new_hop(self, idle_since: Optional[int] = None) -> HopContext:
        timing = Timing()
        return HopContext(
            start=self._clock(),
            timing=timing,
            tracker=self._tracker_factory(timing, idle_since),
        )

    def start(self, request: httpx.Request) -> HopContext:
        """Instrument the initial request (hop zero)."""
        self.hop = self._new_hop()
        attach_hop(request, self.hop)
        return self.hop

    def check_redirect(
        self,
        request: httpx.Request,
        via: Sequence[httpx.Request],
        response: Optional[httpx.Response] = None,
    ) -> None:
        """Called right before *request* (the redirect target) is sent.

        *via* holds the requests already attempted and *response* is the
        redirect response that produced *request*.  The finished hop is
        recorded first and the limit is checked afterwards, so the hop
        that hit the limit still appears in the chain.
        """
        if response is not None and self.hop is not None:
            end = self._clock()
            finished = self.hop
            info = RedirectInfo(
                url=str(response.request.url),
                status_code=response.status_code,
                status=f"{response.status_code} {response.reason_phrase}".strip(),
                start_time=finished.start,
                end_time=end,
                timing=replace(finished.timing),
                trace_messages=tuple(self.log.start_hop()),
            )
            self.redirects.append(info)
            logger.debug(
                "Redirect %d: %s -> %s (%d)",
                len(self.redirects),
                info.url,
                request.url,
                info.status_code,
            )

            self.hop = self._new_hop(idle_since=end)
            attach_hop(request, self.hop)

        if len(via) >= self.max_redirects:
            raise RedirectLimitExceeded(len(via), self.max_redirects)
