"""
Reconciliation types — request, settlement outcomes, failure taxonomy.

    Settlement = AlreadyPaid | Reconciled | NewSessionIssued

A Settlement is never an error: NewSessionIssued means "send the buyer to a
fresh checkout", not "try again in the background".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from paysettle.ledger import DEFAULT_REASON
from paysettle.orders import Order


# ═══════════════════════════════════════════════════════════════════════════════
# Request
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ReconcileRequest:
    """
    One reconciliation call.

    attempt is the caller's own counter (logging only); the ledger assigns
    the persisted attempt number.

    issue_new=False only confirms a payment and never mints a checkout
    session (gateway webhooks). An unusable session comes back as a failure.
    """

    order_id: str
    prior_session_id: str | None = None
    attempt: int = 1
    reason: str = DEFAULT_REASON
    issue_new: bool = True


# ═══════════════════════════════════════════════════════════════════════════════
# Settlements
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class AlreadyPaid:
    """Order was already paid. Nothing was touched."""

    order: Order


@dataclass(frozen=True, slots=True)
class Reconciled:
    """A completed gateway session was found; order is now (processing, paid)."""

    order: Order
    session_id: str
    payment_intent_id: str | None
    attempt_number: int


@dataclass(frozen=True, slots=True)
class NewSessionIssued:
    """
    Buyer must finish checkout at retry_url.

    reused: the order's current open session was handed out again instead
    of minting a new one (a concurrent retry already issued it).
    """

    order: Order
    session_id: str
    retry_url: str
    attempt_number: int
    reused: bool = False


type Settlement = AlreadyPaid | Reconciled | NewSessionIssued


# ═══════════════════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════════════════


class FailureKind(Enum):
    ORDER_NOT_FOUND = auto()
    SESSION_CREATE_FAILED = auto()
    TRANSIENT_GATEWAY = auto()
    STORE_UNAVAILABLE = auto()
    CONFLICT = auto()
    INVALID_STATE = auto()
    SESSION_NOT_COMPLETE = auto()
    UNEXPECTED = auto()


_RETRYABLE = frozenset({
    FailureKind.TRANSIENT_GATEWAY,
    FailureKind.STORE_UNAVAILABLE,
    FailureKind.CONFLICT,
    FailureKind.UNEXPECTED,
})


@dataclass(frozen=True)
class ReconcileError:
    """
    Failed outcome.

    Note: retryable follows the kind. ORDER_NOT_FOUND, SESSION_CREATE_FAILED,
    INVALID_STATE and SESSION_NOT_COMPLETE are hard failures and surface
    immediately.
    """

    kind: FailureKind
    message: str
    order_id: str
    attempt_number: int | None = None
    cause: object | None = None

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE


__all__ = (
    "ReconcileRequest",
    "AlreadyPaid",
    "Reconciled",
    "NewSessionIssued",
    "Settlement",
    "FailureKind",
    "ReconcileError",
)
