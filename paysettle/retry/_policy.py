"""
Retry policy — attempt budget and backoff.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry loop configuration.

    Fluent builder pattern — chain methods to configure.

    Example:
        policy = (
            RetryPolicy()
            .with_max_retries(5)
            .with_base_delay(seconds=0.5)
            .with_max_delay(seconds=10)
        )

    Delays with base_delay=1s, exponential:
        attempt 1: 0s, attempt 2: 1s, attempt 3: 2s, attempt 4: 4s

    Note: Immutable — each method returns new RetryPolicy.
    """

    max_retries: int = 3
    base_delay: timedelta = timedelta(seconds=1)
    exponential: bool = True
    max_delay: timedelta | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.base_delay < timedelta(0):
            raise ValueError("base_delay must not be negative")

    def delay_before(self, attempt: int) -> timedelta:
        """Wait before the given 1-based attempt."""
        if attempt <= 1:
            return timedelta(0)
        delay = self.base_delay * (2 ** (attempt - 2)) if self.exponential else self.base_delay
        if self.max_delay is not None and delay > self.max_delay:
            return self.max_delay
        return delay

    def with_max_retries(self, max_retries: int) -> RetryPolicy:
        """
        Total attempts per controller run, the first one included.

        Example:
            .with_max_retries(3)   # 1 try + 2 retries
        """
        return RetryPolicy(
            max_retries=max_retries,
            base_delay=self.base_delay,
            exponential=self.exponential,
            max_delay=self.max_delay,
        )

    def with_base_delay(
        self,
        *,
        seconds: float | None = None,
        delta: timedelta | None = None,
    ) -> RetryPolicy:
        delay = delta if delta is not None else timedelta(seconds=seconds or 0)
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=delay,
            exponential=self.exponential,
            max_delay=self.max_delay,
        )

    def with_exponential(self, exponential: bool = True) -> RetryPolicy:
        """
        Double the delay per attempt (True) or keep it flat (False).
        """
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            exponential=exponential,
            max_delay=self.max_delay,
        )

    def with_max_delay(
        self,
        *,
        seconds: float | None = None,
        delta: timedelta | None = None,
    ) -> RetryPolicy:
        """Cap a single backoff wait."""
        cap = delta if delta is not None else timedelta(seconds=seconds or 0)
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            exponential=self.exponential,
            max_delay=cap if cap.total_seconds() > 0 else None,
        )


__all__ = ("RetryPolicy",)
