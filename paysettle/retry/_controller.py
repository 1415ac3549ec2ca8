"""
Retry controller — drives reconciliation attempts with backoff.

    Attempt 1 ──▶ Failed(retryable) ──wait 1s──▶ Attempt 2 ──▶ ... ──▶ GaveUp
        │
        ├── Reconciled / AlreadyPaid ──▶ Settled
        └── NewSessionIssued ──────────▶ Redirect (never loops)
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from structlog.contextvars import bound_contextvars

from kungfu import Result, Ok, Error

from paysettle.ledger import DEFAULT_REASON
from paysettle.reconcile import (
    AlreadyPaid,
    FailureKind,
    NewSessionIssued,
    ReconcileError,
    Reconciled,
    ReconciliationEngine,
    Settlement,
)
from paysettle.retry._cancel import CancelToken
from paysettle.retry._policy import RetryPolicy

log = structlog.get_logger(__name__)

SUPPORT_MESSAGE = (
    "We could not complete your payment. "
    "Please contact support with your order number."
)


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Settled:
    """Order is paid (now or before)."""

    order_id: str
    settlement: AlreadyPaid | Reconciled
    attempts: int


@dataclass(frozen=True, slots=True)
class Redirect:
    """Buyer must finish a checkout at retry_url."""

    order_id: str
    retry_url: str
    session_id: str
    attempts: int


@dataclass(frozen=True, slots=True)
class GaveUp:
    """Hard failure or budget exhausted."""

    order_id: str
    error: ReconcileError
    attempts: int
    message: str = SUPPORT_MESSAGE


@dataclass(frozen=True, slots=True)
class Cancelled:
    """Caller aborted; no further attempt was started."""

    order_id: str
    attempts: int
    last_error: ReconcileError | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Controller
# ═══════════════════════════════════════════════════════════════════════════════


class RetryController:
    """
    Client-side retry loop over the reconciliation engine.

    Example:
        controller = RetryController(engine, RetryPolicy().with_max_retries(3))

        match await controller.run(order_id, session_id, cancel=token):
            case Ok(Redirect(retry_url=url)): ...
            case Ok(Settled()): ...
            case Error(GaveUp(message=msg)): ...
            case Error(Cancelled()): ...

    Note: The attempt counter lives in one run and starts at 0 each run, so
    a settled order resets it. Ledger numbering is the engine's business.
    """

    def __init__(self, engine: ReconciliationEngine, policy: RetryPolicy | None = None) -> None:
        self._engine = engine
        self._policy = policy or RetryPolicy()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        order_id: str,
        session_id: str | None = None,
        *,
        cancel: CancelToken | None = None,
        reason: str = DEFAULT_REASON,
    ) -> Result[Settled | Redirect, GaveUp | Cancelled]:
        token = cancel or CancelToken()
        attempt = 0
        last_error: ReconcileError | None = None

        while True:
            next_attempt = attempt + 1
            delay = self._policy.delay_before(next_attempt).total_seconds()

            if delay > 0:
                log.info("retry_backoff", order_id=order_id, attempt=next_attempt, delay=delay)
            if not await token.sleep(delay):
                return Error(Cancelled(order_id, attempt, last_error))

            attempt = next_attempt
            with bound_contextvars(retry_attempt=attempt):
                result = await self._attempt(order_id, session_id, attempt, reason)

            match result:
                case Ok(AlreadyPaid() | Reconciled() as settled):
                    return Ok(Settled(order_id, settled, attempt))
                case Ok(NewSessionIssued(retry_url=url, session_id=sid)):
                    return Ok(Redirect(order_id, url, sid, attempt))
                case Error(err):
                    last_error = err

                    if token.cancelled:
                        log.info("retry_cancelled", order_id=order_id, attempt=attempt)
                        return Error(Cancelled(order_id, attempt, err))
                    if not err.retryable:
                        log.warning(
                            "retry_gave_up", order_id=order_id, attempt=attempt, kind=err.kind.name
                        )
                        return Error(GaveUp(order_id, err, attempt))
                    if attempt >= self._policy.max_retries:
                        log.warning("retry_budget_exhausted", order_id=order_id, attempts=attempt)
                        return Error(GaveUp(order_id, err, attempt))

                    log.info(
                        "retry_attempt_failed",
                        order_id=order_id,
                        attempt=attempt,
                        remaining=self._policy.max_retries - attempt,
                        error=err.message,
                    )

    async def _attempt(
        self,
        order_id: str,
        session_id: str | None,
        attempt: int,
        reason: str,
    ) -> Result[Settlement, ReconcileError]:
        try:
            return await self._engine.reconcile(
                order_id, session_id, attempt=attempt, reason=reason
            )
        except Exception as e:
            log.exception("reconcile_raised", order_id=order_id, attempt=attempt)
            return Error(ReconcileError(
                kind=FailureKind.UNEXPECTED,
                message=str(e) or type(e).__name__,
                order_id=order_id,
                cause=e,
            ))


__all__ = (
    "SUPPORT_MESSAGE",
    "Settled",
    "Redirect",
    "GaveUp",
    "Cancelled",
    "RetryController",
)
