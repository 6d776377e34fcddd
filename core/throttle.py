"""Minimum-interval request throttle shared by every thread using a client."""

from __future__ import annotations

import threading
import time
from typing import Callable


class RequestThrottle:
    """
    Enforces a minimum interval between outgoing requests.

    Slots are reserved under the lock; the wait itself happens outside it,
    so concurrent callers queue up at interval spacing instead of blocking
    each other on the lock.
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be non-negative")
        self._interval = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0

    @property
    def min_interval_seconds(self) -> float:
        return self._interval

    def wait(self) -> float:
        """
        Block until this caller may send a request.

        Returns:
            Seconds waited (0.0 when no wait was needed or throttling is off)
        """
        if self._interval <= 0:
            return 0.0

        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._interval

        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay
