"""Token bucket used for global and per-recipient send budgets."""

from __future__ import annotations

import time
from typing import Callable


class TokenBucket:
    """Refills ``rate`` tokens per second up to ``capacity``; one send costs one token."""

    def __init__(self, rate: float, capacity: int = 1, clock: Callable[[], float] = time.monotonic):
        if rate <= 0:
            raise ValueError("Token bucket rate must be positive")
        if capacity < 1:
            raise ValueError("Token bucket capacity must be at least 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated = now

    def wait_time(self, now: float | None = None) -> float:
        """Seconds until one token is available (0 when it is available now)."""
        now = self._clock() if now is None else now
        self._refill(now)
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.rate

    def consume(self, now: float | None = None) -> None:
        now = self._clock() if now is None else now
        self._refill(now)
        self._tokens -= 1

    def is_full(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        self._refill(now)
        return self._tokens >= self.capacity
