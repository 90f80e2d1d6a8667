from __future__ import annotations

import random
from typing import Callable, Iterator, Optional

from liveart.utils.time import utc_now_s


def next_backoff(prev: float, cap: float) -> float:
    """Exponential backoff progression with cap (no jitter)."""
    return min(prev * 2.0, cap)


def jitter(v: float, *, ratio: float = 0.2) -> float:
    """
    Add ±ratio jitter. ratio=0.2 -> multiply by [0.8, 1.2].
    """
    lo = 1.0 - ratio
    hi = 1.0 + ratio
    return v * (lo + (hi - lo) * random.random())


def backoff_iter(initial: float = 0.25, cap: float = 30.0) -> Iterator[float]:
    """
    Deterministic (no jitter) iterator of backoff values:
    0.25, 0.5, 1, 2, 4, ... (capped).
    """
    v = initial
    while True:
        yield v
        v = next_backoff(v, cap)


class Backoff:
    """
    Stateful reconnect delay: jittered exponential growth, reset on success.
    """
    def __init__(self, initial: float = 0.25, cap: float = 30.0, *, ratio: float = 0.2):
        if initial <= 0 or cap < initial:
            raise ValueError("need 0 < initial <= cap")
        self.initial = initial
        self.cap = cap
        self.ratio = ratio
        self.attempts = 0
        self._current = initial

    def next_delay(self) -> float:
        d = jitter(self._current, ratio=self.ratio) if self.ratio else self._current
        self._current = next_backoff(self._current, self.cap)
        self.attempts += 1
        return d

    def reset(self) -> None:
        self._current = self.initial
        self.attempts = 0


class OutageTracker:
    """
    Tracks one continuous upstream outage. failed() returns True exactly once
    per outage, the first time the outage has lasted at least window_s.
    """
    def __init__(self, window_s: float, clock: Optional[Callable[[], float]] = None):
        self.window_s = window_s
        self._clock = clock or utc_now_s
        self.down_since: Optional[float] = None
        self._reported = False

    def failed(self) -> bool:
        now = self._clock()
        if self.down_since is None:
            self.down_since = now
        if not self._reported and now - self.down_since >= self.window_s:
            self._reported = True
            return True
        return False

    def recovered(self) -> None:
        self.down_since = None
        self._reported = False

    @property
    def reported(self) -> bool:
        return self._reported
