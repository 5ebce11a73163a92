import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Tuple

from ...application.ports.rate_limiter import RateLimiter, RateLimitResult

SWEEP_EVERY = 1000


class InMemoryRateLimiter(RateLimiter):
    """Sliding-window limiter for single-process deployments without Redis."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        # key -> (window seconds, hit timestamps)
        self._store: Dict[str, Tuple[int, Deque[float]]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._checks = 0

    def check(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = self._clock()
        window_start = now - window_seconds
        with self._lock:
            self._checks += 1
            if self._checks % SWEEP_EVERY == 0:
                self._sweep(now)

            entry = self._store.get(key)
            times = entry[1] if entry else deque()
            while times and times[0] <= window_start:
                times.popleft()
            if not times:
                self._store.pop(key, None)

            if len(times) >= limit:
                reset = max(1, math.ceil(times[0] + window_seconds - now)) if times else window_seconds
                return RateLimitResult(allowed=False, remaining=0, reset=reset)
            times.append(now)
            self._store[key] = (window_seconds, times)
            return RateLimitResult(
                allowed=True,
                remaining=max(0, limit - len(times)),
                reset=max(1, math.ceil(times[0] + window_seconds - now)),
            )

    def _sweep(self, now: float) -> None:
        # keys that are never checked again would otherwise stay forever
        stale = [key for key, (window, times) in self._store.items() if not times or times[-1] <= now - window]
        for key in stale:
            del self._store[key]
