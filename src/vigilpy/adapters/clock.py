"""Clock adapters implementing ClockPort."""

import time


class SystemClock:
    """Wall-clock time from ``time.time()``."""

    def time(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to.

    Suitable for testing windows, cooldowns and retention without sleeping.

    Args:
        start: Initial Unix timestamp in seconds.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward by ``seconds``."""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += seconds

    def set(self, timestamp: float) -> None:
        self._now = timestamp
