"""
Sliding window request log used by the rate limiting middleware.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict


class SlidingWindowStore:
    """
    Per-client request timestamps within a sliding time window.

    Entries older than the window are evicted on every hit, and clients
    with no recent requests are dropped entirely.
    """

    def __init__(self, period: float, clock: Callable[[], float] = time.monotonic):
        self.period = period
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}

    def _evict(self, now: float):
        cutoff = now - self.period
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]

    def hit(self, key: str, limit: int) -> bool:
        """
        Record a request for ``key`` if it is within ``limit``.

        Returns:
            False when the client already made ``limit`` requests in the window
        """
        now = self.clock()
        self._evict(now)

        hits = self._hits.setdefault(key, deque())
        if len(hits) >= limit:
            return False
        hits.append(now)
        return True

    def count(self, key: str) -> int:
        self._evict(self.clock())
        return len(self._hits.get(key, ()))

    def __len__(self) -> int:
        return len(self._hits)
