from dataclasses import dataclass
from typing import Protocol


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset: int


class RateLimiter(Protocol):
    def check(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        ...
