"""
Request scheduler - one pacing policy shared by the HTTP and browser fetchers
"""

import logging
import random
import threading
import time
from collections import deque
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RequestScheduler:
    """
    Enforces a randomized gap between requests plus a per-minute ceiling.

    wait() is called by a fetcher right before each request. The lock is held
    while sleeping so concurrent workers queue up behind each other instead of
    firing together once a gap expires.
    """

    def __init__(
        self,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
        max_requests_per_minute: int = 60,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        uniform: Callable[[float, float], float] = random.uniform,
    ):
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError(f"Invalid delay range: {min_delay}-{max_delay}")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_requests_per_minute = max_requests_per_minute
        self._sleep = sleep
        self._clock = clock
        self._uniform = uniform
        self._lock = threading.Lock()
        self._last_request: Optional[float] = None
        self._recent: Deque[float] = deque()

    def _next_slot(self, now: float) -> float:
        earliest = now
        if self._last_request is not None:
            earliest = max(earliest, self._last_request + self._uniform(self.min_delay, self.max_delay))

        while self._recent and now - self._recent[0] >= WINDOW_SECONDS:
            self._recent.popleft()
        if self.max_requests_per_minute > 0 and len(self._recent) >= self.max_requests_per_minute:
            earliest = max(earliest, self._recent[0] + WINDOW_SECONDS)
        return earliest

    def wait(self) -> float:
        """Block until the next request may go out. Returns seconds slept."""
        with self._lock:
            now = self._clock()
            delay = self._next_slot(now) - now
            if delay > 0:
                logger.debug("Throttling for %.2fs", delay)
                self._sleep(delay)
            stamp = self._clock()
            self._last_request = stamp
            self._recent.append(stamp)
            return max(delay, 0.0)
