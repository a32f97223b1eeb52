"""Sliding-window rate limiter for quick-analysis model calls."""

import threading
import time
from collections import deque
from typing import Callable, Optional

from flash_assistant.logger import get_logger


class RateLimiter:
    """Admits at most ``max_requests`` calls per rolling ``window_seconds``.

    Timestamps older than the window are purged before every admission
    check. The queue never holds more than ``max_requests`` entries.
    """

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: deque = deque(maxlen=max_requests)
        self._lock = threading.Lock()
        self.logger = get_logger(f"{__name__}.RateLimiter")

    def _purge(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def try_admit(self, now: Optional[float] = None) -> bool:
        """
        Record a request if the window has room.

        Args:
            now: Timestamp in clock seconds; defaults to the injected clock.

        Returns:
            True if admitted, False if the window is full.
        """
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            if len(self._timestamps) >= self.max_requests:
                self.logger.debug(
                    f"Denied: {len(self._timestamps)} requests in the last {self.window_seconds}s"
                )
                return False
            self._timestamps.append(now)
            return True

    def remaining(self, now: Optional[float] = None) -> int:
        """Number of requests that would still be admitted right now."""
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            return self.max_requests - len(self._timestamps)
