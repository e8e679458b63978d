"""
Progress estimation for in-flight loads.

Producers are opaque, so progress is a heuristic: every attempt owns an
equal slice of [0, 99] and, inside its slice, approaches the slice end with
elapsed time. The reported value is the running maximum, so it never moves
backwards, and only ``complete()`` reports 100.
"""

import math
import time
from typing import Callable

MAX_IN_FLIGHT_PROGRESS = 99.0
COMPLETE = 100.0


class ProgressTracker:
    """Monotonic progress for a single logical load."""

    def __init__(self, max_attempts: int, expected_duration: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max(1, max_attempts)
        self.expected_duration = expected_duration
        self._clock = clock
        self._attempt = 1
        self._attempt_started = clock()
        self._reported = 0.0
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def begin_attempt(self, attempt: int) -> float:
        """Move to ``attempt``; returns the progress at its start."""
        self._attempt = min(max(attempt, self._attempt), self.max_attempts)
        self._attempt_started = self._clock()
        return self.value()

    def value(self) -> float:
        if self._done:
            return COMPLETE

        span = MAX_IN_FLIGHT_PROGRESS / self.max_attempts
        floor = span * (self._attempt - 1)
        elapsed = max(0.0, self._clock() - self._attempt_started)
        fraction = 1.0 - math.exp(-elapsed / self.expected_duration)

        candidate = min(floor + span * fraction, MAX_IN_FLIGHT_PROGRESS)
        self._reported = max(self._reported, candidate)
        return self._reported

    def complete(self) -> float:
        self._done = True
        self._reported = COMPLETE
        return COMPLETE
