"""Reusable retry policy for provider calls.

Responsibilities:
- Compute capped exponential backoff delays with proportional jitter.
- Retry an operation while its failure is classified as transient.
- Apply the same policy to classification and synthesis requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import random
import time
from typing import Callable, TypeVar

_Result = TypeVar("_Result")

RETRYABLE_FAILURE_KINDS = frozenset({"timeout", "transport", "rate_limited", "server_error"})


def is_retryable_failure(exc: Exception) -> bool:
    """Return whether an exception carries a transient provider failure kind."""

    return getattr(exc, "failure_kind", None) in RETRYABLE_FAILURE_KINDS


@dataclass(slots=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_seconds: Delay before the second attempt.
        max_delay_seconds: Upper bound for any single delay.
        jitter_ratio: Maximum extra delay as a fraction of the computed delay.
        random_source: Source of uniform values in `[0, 1)` for jitter.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0
    jitter_ratio: float = 0.1
    random_source: Callable[[], float] = field(default=random.random)

    def __post_init__(self) -> None:
        """Validate policy bounds."""

        if self.max_attempts < 1:
            raise ValueError("`max_attempts` must be at least 1.")
        if self.base_delay_seconds < 0.0 or self.max_delay_seconds < 0.0:
            raise ValueError("Retry delays must be non-negative.")
        if self.jitter_ratio < 0.0:
            raise ValueError("`jitter_ratio` must be non-negative.")

    def delay_for(self, attempt: int) -> float:
        """Return the delay to wait after a failed 1-based `attempt`."""

        exponent = max(0, attempt - 1)
        base_delay = min(self.max_delay_seconds, self.base_delay_seconds * (2**exponent))
        jitter = base_delay * self.jitter_ratio * self.random_source()
        return min(self.max_delay_seconds, base_delay + jitter)

    def run(
        self,
        operation: Callable[[], _Result],
        *,
        is_retryable: Callable[[Exception], bool] = is_retryable_failure,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> _Result:
        """Run `operation`, retrying transient failures until attempts run out."""

        attempt = 1
        while True:
            try:
                return operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not is_retryable(exc):
                    raise
                delay = self.delay_for(attempt)
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                if delay > 0.0:
                    time.sleep(delay)
                attempt += 1
