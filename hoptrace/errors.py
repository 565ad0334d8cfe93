"""Exceptions raised while tracing a transaction.

Every failure is terminal for the transaction; nothing here is retried.
"""

from __future__ import annotations

from typing import Optional


class HopTraceError(Exception):
    """Base class for all hoptrace failures."""


class RedirectLimitExceeded(HopTraceError):
    def __init__(self, hops: int, max_redirects: int):
        self.hops = hops
        self.max_redirects = max_redirects
        super().__init__(f"stopped after {hops} redirects (max: {max_redirects})")


class AllResolversFailed(HopTraceError):
    """Every configured DNS server failed for one resolution attempt."""

    def __init__(self, servers: list[str], last_error: Optional[BaseException]):
        self.servers = list(servers)
        self.last_error = last_error
        super().__init__(f"all DNS servers failed, last error: {last_error}")


class DialError(HopTraceError):
    def __init__(self, address: str, cause: Optional[BaseException]):
        self.address = address
        self.cause = cause
        super().__init__(f"dial {address}: {cause}")


class BodyReadError(HopTraceError):
    pass


class TransactionTimeout(HopTraceError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"transaction timed out after {timeout:g}s")
