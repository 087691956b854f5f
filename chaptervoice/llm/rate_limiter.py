"""Rate limiting for provider calls.

Responsibilities:
- Enforce a minimum interval between requests sharing one key.
- Pace attribution batches and synthesis calls independently of retry policy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import monotonic, sleep
from typing import Callable, Mapping


@dataclass(slots=True)
class RateLimiter:
    """Per-key minimum-interval limiter used around provider requests.

    Attributes:
        min_interval_seconds: Default interval between two acquisitions of a key.
        key_intervals: Interval overrides for specific keys.
        clock: Monotonic time source.
        sleeper: Blocking wait function.
    """

    min_interval_seconds: float = 0.05
    key_intervals: Mapping[str, float] = field(default_factory=dict)
    clock: Callable[[], float] = monotonic
    sleeper: Callable[[float], None] = sleep
    _next_allowed_at: dict[str, float] = field(default_factory=dict)

    def interval_for(self, key: str) -> float:
        """Return the effective interval for one key."""

        return float(self.key_intervals.get(key, self.min_interval_seconds))

    def acquire(self, key: str) -> float:
        """Block until `key` may be used again and return the time waited."""

        interval = self.interval_for(key)
        if interval <= 0.0:
            return 0.0
        now = self.clock()
        wait_seconds = self._next_allowed_at.get(key, 0.0) - now
        waited = 0.0
        if wait_seconds > 0.0:
            self.sleeper(wait_seconds)
            waited = wait_seconds
            now = self.clock()
        self._next_allowed_at[key] = now + interval
        return waited
