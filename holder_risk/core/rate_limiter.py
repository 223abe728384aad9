"""
Sliding-window rate limiter for remote label queries
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict


class SlidingWindowRateLimiter:
    """
    Allows at most max_requests within a trailing window

    Rejections are not queued; callers fall back to another source.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            max_requests: Requests allowed per window
            window_s: Window length in seconds
            clock: Monotonic time source in seconds
        """
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_s <= 0:
            raise ValueError("window_s must be positive")

        self.max_requests = max_requests
        self.window_s = window_s
        self._clock = clock
        self._request_times: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._request_times and now - self._request_times[0] >= self.window_s:
            self._request_times.popleft()

    async def try_acquire(self) -> bool:
        """
        Record a request if the window has room

        Returns:
            True if the request is allowed
        """
        async with self._lock:
            now = self._clock()
            self._prune(now)

            if len(self._request_times) >= self.max_requests:
                return False

            self._request_times.append(now)
            return True

    def recent_requests(self) -> int:
        """Requests inside the current window"""
        now = self._clock()
        return sum(1 for t in self._request_times if now - t < self.window_s)

    def get_stats(self) -> Dict[str, float]:
        recent = self.recent_requests()
        return {
            "recent_requests": recent,
            "max_requests": self.max_requests,
            "remaining": max(0, self.max_requests - recent),
            "window_s": self.window_s,
        }
