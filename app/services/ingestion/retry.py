"""Backoff schedule and request pacing for upstream model calls."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from random import SystemRandom
from threading import Lock


def exponential_backoff(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.0,
) -> Iterator[tuple[int, float]]:
    """Yield (attempt, delay_seconds) pairs; the delay is slept after a failed attempt.

    With the defaults three attempts are allowed and failures wait 1s then 2s.
    Jitter only ever lengthens a delay.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if base_delay <= 0:
        raise ValueError("base_delay must be > 0")
    if factor < 1:
        raise ValueError("factor must be >= 1")
    if jitter < 0:
        raise ValueError("jitter must be >= 0")

    rng = SystemRandom()
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        jitter_offset = rng.uniform(0, delay * jitter) if jitter > 0 else 0.0
        yield attempt, delay + jitter_offset
        delay = min(delay * factor, max_delay)


class RequestBudget:
    """Process-wide pacing: consecutive request starts are at least `min_interval` apart."""

    def __init__(
        self,
        min_interval: float = 0.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._next_slot = 0.0
        self._lock = Lock()

    def acquire(self) -> None:
        if self._min_interval == 0:
            return
        with self._lock:
            now = self._clock()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self._min_interval
        if wait > 0:
            self._sleep(wait)
