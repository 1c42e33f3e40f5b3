"""
Scheduling policy for the observer's poll loop.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PollPolicy:
    """
    How long the poll loop waits after a cycle before starting the next one.

    Attributes:
        interval_seconds: Wait after a successful cycle
        failure_backoff: Multiplier applied per consecutive failed cycle
            (1.0 keeps the interval, >1 lengthens it, <1 shortens it)
        max_interval_seconds: Upper bound on the wait
        min_interval_seconds: Lower bound on the wait
    """

    interval_seconds: float = 60.0
    failure_backoff: float = 1.0
    max_interval_seconds: float = 600.0
    min_interval_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be non-negative")
        if self.failure_backoff <= 0:
            raise ValueError("failure_backoff must be positive")
        if self.max_interval_seconds < self.min_interval_seconds:
            raise ValueError("max_interval_seconds must be >= min_interval_seconds")

    def next_interval(self, consecutive_failures: int = 0) -> float:
        """Seconds to wait after a cycle, given the current failure streak."""
        streak = min(max(0, consecutive_failures), 64)
        interval = self.interval_seconds * (self.failure_backoff ** streak)
        return min(self.max_interval_seconds, max(self.min_interval_seconds, interval))
