"""Admission control for the expensive primary resolver."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

DEFAULT_LIMIT = 5
DEFAULT_WINDOW_SECONDS = 60.0


class RateLimiter:
    """Allow at most ``limit`` admissions per ``window_seconds``.

    The window opens on the first admission after a reset and is discarded
    once ``window_seconds`` have passed. ``try_acquire`` only consumes an
    admission when it returns True. A lock guards the counter because the
    proxy runs extractions on worker threads.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start: Optional[float] = None
        self._count = 0

    def _roll_window(self, now: float) -> None:
        if not self._window_open(now):
            self._window_start = now
            self._count = 0

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self._count >= self.limit:
                return False
            self._count += 1
            return True

    def _window_open(self, now: float) -> bool:
        return self._window_start is not None and now <= self._window_start + self.window_seconds

    def remaining(self) -> int:
        with self._lock:
            if not self._window_open(self._clock()):
                return self.limit
            return self.limit - self._count

    def reset_in(self) -> float:
        """Seconds until the current window expires (0 when no window is open)."""
        with self._lock:
            now = self._clock()
            if not self._window_open(now):
                return 0.0
            return self._window_start + self.window_seconds - now

    def reset(self) -> None:
        with self._lock:
            self._window_start = None
            self._count = 0

    def snapshot(self) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining(),
            "resetInSeconds": round(self.reset_in(), 1),
        }
