"""
Fixed-window rate limiter for outbound AI work.

Process-local: counters live in this process only, so the effective limit in
a multi-process deployment is `limit × processes`. Entries whose window has
ended are swept at most once every SWEEP_INTERVAL seconds.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

SWEEP_INTERVAL = 300.0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed:   bool
    remaining: int
    reset_at:  float   # clock value at which the current window ends

    def retry_after(self, now: float) -> float:
        return max(0.0, self.reset_at - now)


class FixedWindowRateLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit   = limit
        self.window  = window_seconds
        self._clock  = clock
        self._lock   = threading.Lock()
        self._windows: dict[str, tuple[int, float]] = {}   # key → (count, reset_at)
        self._last_sweep = clock()

    def check(self, key: str) -> RateLimitDecision:
        """Count one request for `key` and report whether it is allowed."""
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + self.window

            if count >= self.limit:
                self._windows[key] = (count, reset_at)
                return RateLimitDecision(allowed=False, remaining=0, reset_at=reset_at)

            count += 1
            self._windows[key] = (count, reset_at)
            return RateLimitDecision(
                allowed=True,
                remaining=self.limit - count,
                reset_at=reset_at,
            )

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < SWEEP_INTERVAL:
            return
        self._windows = {k: v for k, v in self._windows.items() if v[1] > now}
        self._last_sweep = now

    def __len__(self) -> int:
        return len(self._windows)
