"""Sliding-window admission gate for an external collaborator."""

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class RateWindow:
    """Call timestamps (seconds) admitted within the current window."""

    window_duration_ms: int
    max_calls_per_window: int
    call_timestamps: deque[float] = field(default_factory=deque)


class RateLimiter:
    """Fail-fast sliding-window limiter.

    ``try_acquire`` never blocks: callers that are denied decide whether to
    back off, queue, or give up. Admission runs under one lock per instance,
    so the window cap holds even with callers on several threads.
    """

    def __init__(
        self,
        max_calls_per_window: int,
        window_ms: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_calls_per_window < 1:
            raise ValueError("max_calls_per_window must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be at least 1")
        self._window = RateWindow(window_duration_ms=window_ms, max_calls_per_window=max_calls_per_window)
        self._clock = clock
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        horizon = now - self._window.window_duration_ms / 1000
        timestamps = self._window.call_timestamps
        while timestamps and timestamps[0] <= horizon:
            timestamps.popleft()

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            self._purge(now)
            if len(self._window.call_timestamps) >= self._window.max_calls_per_window:
                return False
            self._window.call_timestamps.append(now)
            return True

    def available(self) -> int:
        """Calls that would be admitted right now."""
        with self._lock:
            self._purge(self._clock())
            return self._window.max_calls_per_window - len(self._window.call_timestamps)

    def retry_after(self) -> float:
        """Seconds until the oldest admitted call leaves the window; 0 when a call would be admitted now."""
        with self._lock:
            now = self._clock()
            self._purge(now)
            timestamps = self._window.call_timestamps
            if len(timestamps) < self._window.max_calls_per_window:
                return 0.0
            return max(0.0, timestamps[0] + self._window.window_duration_ms / 1000 - now)

    @property
    def window(self) -> RateWindow:
        """Snapshot of the current window."""
        with self._lock:
            return RateWindow(
                window_duration_ms=self._window.window_duration_ms,
                max_calls_per_window=self._window.max_calls_per_window,
                call_timestamps=deque(self._window.call_timestamps),
            )

    def reset(self) -> None:
        with self._lock:
            self._window.call_timestamps.clear()
