import threading
import time
from collections import defaultdict, deque
from typing import Callable


class SlidingWindowLimiter:
    """At most ``limit`` acquisitions per key within any ``window_secs`` span."""

    def __init__(
        self,
        limit: int,
        window_secs: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("Limit must be positive")
        if window_secs <= 0:
            raise ValueError("Window must be positive")
        self.limit = limit
        self.window_secs = window_secs
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def try_acquire(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            cutoff = now - self.window_secs
            self._forget_idle(cutoff)
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def _forget_idle(self, cutoff: float) -> None:
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def retry_after(self, key: str) -> float:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key)
            if not hits or len(hits) < self.limit:
                return 0.0
            return max(0.0, hits[0] + self.window_secs - now)
