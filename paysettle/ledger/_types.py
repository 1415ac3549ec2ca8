"""
Ledger types — one row per reconciliation attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime


DEFAULT_REASON = "user initiated retry"


@dataclass(frozen=True, slots=True)
class AttemptOutcome:
    """
    Values written by the single outcome update of an attempt row.

    Example:
        AttemptOutcome.paid()
        AttemptOutcome.issued("cs_2", "https://checkout.stripe.com/c/cs_2")
        AttemptOutcome.failed("gateway unavailable")
    """

    success: bool
    new_session_id: str | None = None
    retry_url: str | None = None
    error: str | None = None

    @classmethod
    def paid(cls) -> AttemptOutcome:
        return cls(success=True)

    @classmethod
    def issued(cls, session_id: str, retry_url: str) -> AttemptOutcome:
        # Payment is not observed until the buyer finishes the new checkout
        return cls(success=False, new_session_id=session_id, retry_url=retry_url)

    @classmethod
    def failed(cls, error: str) -> AttemptOutcome:
        return cls(success=False, error=error)


@dataclass(frozen=True, slots=True)
class RetryAttempt:
    """
    Ledger row.

    success is tri-state: None until the outcome is recorded, then True/False.
    """

    order_id: str
    attempt_number: int
    attempted_at: datetime
    reason: str = DEFAULT_REASON
    success: bool | None = None
    new_session_id: str | None = None
    retry_url: str | None = None
    error: str | None = None

    @property
    def settled(self) -> bool:
        """Outcome already recorded."""
        return self.success is not None

    def with_outcome(self, outcome: AttemptOutcome) -> RetryAttempt:
        return replace(
            self,
            success=outcome.success,
            new_session_id=outcome.new_session_id,
            retry_url=outcome.retry_url,
            error=outcome.error,
        )


__all__ = (
    "DEFAULT_REASON",
    "AttemptOutcome",
    "RetryAttempt",
)
