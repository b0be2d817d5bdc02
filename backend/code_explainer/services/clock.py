"""Time sources shared by the rate limiters."""
from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Return the current time in seconds."""


class SystemClock:
    """Wall-clock time, used for state that outlives the process."""

    def now(self) -> float:
        return time.time()


class MonotonicClock:
    """Monotonic time for in-process state that must ignore clock jumps."""

    def now(self) -> float:
        return time.monotonic()
