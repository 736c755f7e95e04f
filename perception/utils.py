"""
Timing helpers shared by the scheduler, the sink and the UI.
"""

import time
from collections import deque
from typing import Deque


def now_ms() -> float:
    """Monotonic clock in milliseconds; all store timestamps use it."""
    return time.monotonic() * 1000.0


class FPSCounter:
    """Rate of a repeating event (a paint, an inference) over its last N intervals."""

    def __init__(self, window: int = 30) -> None:
        self._last_ms: float | None = None
        self._intervals: Deque[float] = deque(maxlen=window)

    def tick(self, timestamp_ms: float | None = None) -> float:
        """Record one event and return the interval since the previous one (0.0 for the first)."""
        now = now_ms() if timestamp_ms is None else timestamp_ms
        interval_ms = 0.0 if self._last_ms is None else now - self._last_ms
        if self._last_ms is not None:
            self._intervals.append(interval_ms)
        self._last_ms = now
        return interval_ms

    @property
    def mean_interval_ms(self) -> float:
        return sum(self._intervals) / len(self._intervals) if self._intervals else 0.0

    @property
    def rolling_fps(self) -> float:
        mean = self.mean_interval_ms
        return 1000.0 / mean if mean > 0 else 0.0

    def reset(self) -> None:
        self._last_ms = None
        self._intervals.clear()
