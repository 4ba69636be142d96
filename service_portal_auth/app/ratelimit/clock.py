"""
Time source for the limiter.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that returns the current time in epoch seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> float:
        return time.time()
