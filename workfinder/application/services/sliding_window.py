import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Tuple, Union

Number = Union[int, Decimal]


@dataclass
class WindowDecision:
    allowed: bool
    used: Number
    remaining: Number
    retry_after_seconds: int


@dataclass
class SlidingWindow:
    """Threshold over timestamped events in a trailing window.

    Each event carries a weight: 1 for request counting, the amount for
    money totals. A new event of ``weight`` fits when the weights still
    inside ``[now - window, now]`` plus ``weight`` stay within ``threshold``.
    When it does not fit, ``retry_after_seconds`` is how long until enough
    of the oldest events age out to make room.
    """

    window_seconds: int
    threshold: Number

    def evaluate(self, events: Iterable[Tuple[datetime, Number]], now: datetime, weight: Number = 1) -> WindowDecision:
        window_start = now - timedelta(seconds=self.window_seconds)
        in_window = sorted((ts, w) for ts, w in events if window_start <= ts <= now)
        used = sum((w for _, w in in_window), type(weight)(0))
        remaining = max(self.threshold - used, type(weight)(0))

        if used + weight <= self.threshold:
            return WindowDecision(True, used, remaining, 0)

        # Walk the oldest events until the freed weight makes room
        excess = used + weight - self.threshold
        freed = type(weight)(0)
        retry_at = None
        for ts, w in in_window:
            freed += w
            if freed >= excess:
                retry_at = ts + timedelta(seconds=self.window_seconds)
                break

        if retry_at is None:
            # weight alone exceeds the threshold; no amount of waiting helps
            return WindowDecision(False, used, remaining, self.window_seconds)

        retry_after = max(1, math.ceil((retry_at - now).total_seconds()))
        return WindowDecision(False, used, remaining, retry_after)

    def evaluate_count(self, timestamps: Iterable[datetime], now: datetime) -> WindowDecision:
        return self.evaluate(((ts, 1) for ts in timestamps), now, 1)
