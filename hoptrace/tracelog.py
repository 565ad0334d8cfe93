"""Ordered, debounced log of lifecycle event messages."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Optional

from hoptrace.config import TRACE_DEBOUNCE_NS
from hoptrace.models import TraceMessage


class TraceLog:
    """Append-only trace log for one transaction.

    Keeps every message of the transaction in emission order, plus the
    slice belonging to the hop in flight.  A message identical to the
    immediately preceding one and emitted within the debounce window is
    dropped; only that single previous message is compared.
    """

    def __init__(
        self,
        clock: Callable[[], int] = time.perf_counter_ns,
        debounce_ns: int = TRACE_DEBOUNCE_NS,
    ):
        self._clock = clock
        self._debounce_ns = debounce_ns
        self._entries: list[TraceMessage] = []
        self._hop_entries: list[TraceMessage] = []
        self._last_text: Optional[str] = None
        self._last_at: Optional[int] = None

    def append(self, message: str) -> bool:
        """Record *message*.  Returns False if it was debounced."""
        now = self._clock()
        if (
            message == self._last_text
            and self._last_at is not None
            and now - self._last_at < self._debounce_ns
        ):
            return False

        entry = TraceMessage(text=message, at=now, timestamp=datetime.now())
        self._entries.append(entry)
        self._hop_entries.append(entry)
        self._last_text = message
        self._last_at = now
        return True

    def start_hop(self) -> list[TraceMessage]:
        """Close the current hop: return its messages and reset dedup state."""
        finished = self._hop_entries
        self._hop_entries = []
        self._last_text = None
        self._last_at = None
        return finished

    @property
    def entries(self) -> list[TraceMessage]:
        return list(self._entries)

    @property
    def hop_entries(self) -> list[TraceMessage]:
        return list(self._hop_entries)

