"""
Wire models — pydantic in/out with domain codecs.

    RetryPaymentIn.to_domain(order_id)  → ReconcileRequest
    RetryPaymentOut.from_domain(result) ← controller Result
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from kungfu import Result, Ok, Error

from paysettle.ledger import DEFAULT_REASON, RetryAttempt
from paysettle.reconcile import ReconcileRequest
from paysettle.retry import Cancelled, GaveUp, Redirect, Settled


class RetryPaymentIn(BaseModel):
    session_id: str | None = None

    def to_domain(self, order_id: str) -> ReconcileRequest:
        return ReconcileRequest(
            order_id=order_id,
            prior_session_id=self.session_id or None,
            reason=DEFAULT_REASON,
        )


class RetryPaymentOut(BaseModel):
    success: bool
    retry_url: str | None = None
    session_id: str | None = None
    error: str | None = None
    message: str | None = None
    attempts: int = 0
    retry_failed: bool = False

    @classmethod
    def from_domain(
        cls, dom: Result[Settled | Redirect, GaveUp | Cancelled]
    ) -> RetryPaymentOut:
        match dom:
            case Ok(Settled(attempts=n)):
                return cls(
                    success=True,
                    message="Payment found and order updated",
                    attempts=n,
                )
            case Ok(Redirect(retry_url=url, session_id=sid, attempts=n)):
                return cls(
                    success=True,
                    retry_url=url,
                    session_id=sid,
                    message="New checkout session created",
                    attempts=n,
                )
            case Error(GaveUp(error=err, message=msg, attempts=n)):
                return cls(
                    success=False,
                    error=err.message,
                    message=msg,
                    attempts=n,
                    retry_failed=True,
                )
            case Error(Cancelled(attempts=n)):
                return cls(
                    success=False,
                    error="Retry cancelled",
                    attempts=n,
                    retry_failed=True,
                )
            case _:
                raise TypeError(f"Unexpected retry result: {dom!r}")


class RetryAttemptOut(BaseModel):
    attempt_number: int
    attempted_at: datetime
    reason: str
    success: bool | None
    new_session_id: str | None = None
    retry_url: str | None = None
    error: str | None = None

    @classmethod
    def from_domain(cls, dom: RetryAttempt) -> RetryAttemptOut:
        return cls(
            attempt_number=dom.attempt_number,
            attempted_at=dom.attempted_at,
            reason=dom.reason,
            success=dom.success,
            new_session_id=dom.new_session_id,
            retry_url=dom.retry_url,
            error=dom.error,
        )


class RetryAttemptsOut(BaseModel):
    order_id: str
    attempts: list[RetryAttemptOut]

    @classmethod
    def from_domain(cls, order_id: str, dom: list[RetryAttempt]) -> RetryAttemptsOut:
        return cls(
            order_id=order_id,
            attempts=[RetryAttemptOut.from_domain(a) for a in dom],
        )


class WebhookAck(BaseModel):
    received: bool = True
    order_id: str | None = None
    outcome: str | None = None


__all__ = (
    "RetryPaymentIn",
    "RetryPaymentOut",
    "RetryAttemptOut",
    "RetryAttemptsOut",
    "WebhookAck",
)
