"""Sliding-window call budget for upstream price requests."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class RateLimiter:
    """
    Sliding-window rate limiter.

    Admits at most ``max_calls`` calls in any trailing ``window_ms`` interval,
    bounds included: a call exactly ``window_ms`` old still counts.
    Never blocks and never raises; callers get ``False`` when over budget.
    """

    def __init__(self, max_calls: int = 100, window_ms: int = 60000, clock: Callable[[], float] = monotonic_ms):
        if max_calls <= 0:
            raise ValueError("max_calls must be positive")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.max_calls = max_calls
        self.window_ms = window_ms
        self._clock = clock
        self._calls: deque[float] = deque()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_ms
        while self._calls and self._calls[0] < cutoff:
            self._calls.popleft()

    def can_make_call(self) -> bool:
        """Admit and record a call if the window has room."""
        now = self._clock()
        self._prune(now)
        if len(self._calls) < self.max_calls:
            self._calls.append(now)
            return True
        return False

    def get_remaining_calls(self) -> int:
        self._prune(self._clock())
        return max(0, self.max_calls - len(self._calls))

    def get_reset_time(self) -> float:
        """Time (ms, limiter clock) after which the oldest retained call no longer counts."""
        self._prune(self._clock())
        if not self._calls:
            return self._clock()
        return self._calls[0] + self.window_ms
