"""Fixed-window request rate limiting, keyed by source address.

Counters reset at fixed boundaries rather than sliding, so a client can burst
up to twice the limit across a window edge. State is process-local: a restart
clears it and separate workers each keep their own counts.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from errors import RateLimited

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "unknown"


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))


class FixedWindowRateLimiter:
    """Counts requests per source key inside fixed windows.

    The map holds at most ``max_entries`` keys. When a new key arrives at
    capacity, expired entries are swept and, if that frees nothing, the entry
    closest to its reset is evicted.
    """

    def __init__(
        self,
        window_seconds: float = 60,
        max_requests: int = 60,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds <= 0 or max_requests < 1 or max_entries < 1:
            raise ValueError("window_seconds, max_requests and max_entries must be positive")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + window_seconds

    def check(self, key: str) -> RateLimitDecision:
        """Record one request for ``key`` and decide whether it is admitted."""
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep_locked(now)
                self._next_sweep = now + self.window_seconds

            entry = self._entries.get(key)

            if entry is None or now > entry.window_reset_at:
                if entry is None and len(self._entries) >= self.max_entries:
                    self._make_room(now)
                entry = RateLimitEntry(count=1, window_reset_at=now + self.window_seconds)
                self._entries[key] = entry
                return RateLimitDecision(True, self.max_requests - 1, entry.window_reset_at)

            if entry.count >= self.max_requests:
                return RateLimitDecision(False, 0, entry.window_reset_at)

            entry.count += 1
            return RateLimitDecision(
                True, self.max_requests - entry.count, entry.window_reset_at
            )

    def hit(self, key: str) -> RateLimitDecision:
        """Like ``check`` but raises RateLimited when the request is rejected."""
        decision = self.check(key)
        if not decision.allowed:
            raise RateLimited(retry_after=decision.retry_after(self._clock()))
        return decision

    def sweep(self) -> int:
        """Remove entries whose window has passed. Returns the number removed."""
        now = self._clock()
        with self._lock:
            return self._sweep_locked(now)

    def get_entry(self, key: str) -> RateLimitEntry | None:
        """Snapshot of one source's window. Test hook; not used on the request path."""
        with self._lock:
            entry = self._entries.get(key)
            return RateLimitEntry(entry.count, entry.window_reset_at) if entry else None

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if now > e.window_reset_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def _make_room(self, now: float) -> None:
        removed = self._sweep_locked(now)
        if removed:
            logger.debug("Rate limiter swept %d expired entries", removed)
            return
        oldest = min(self._entries, key=lambda k: self._entries[k].window_reset_at)
        del self._entries[oldest]
        logger.warning(
            "Rate limiter at capacity (%d sources); evicted oldest entry", self.max_entries
        )


def source_key(headers: Mapping[str, str]) -> str:
    """Derive the rate-limit key from the first X-Forwarded-For address."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return UNKNOWN_SOURCE
