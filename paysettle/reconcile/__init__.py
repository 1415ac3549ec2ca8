"""
Reconcile — resolve local order state against gateway truth.

    from paysettle import reconcile as R

    engine = R.ReconciliationEngine(store, gateway, ledger, urls, notifier=notifier)
    result = await engine.reconcile(order_id, prior_session_id="cs_123")

Outcomes:
    Ok(AlreadyPaid)        paid before we looked, nothing written
    Ok(Reconciled)         gateway reports the session complete, order is paid
    Ok(NewSessionIssued)   buyer must finish checkout at retry_url
    Error(ReconcileError)  kind + retryable
"""

from paysettle.reconcile._types import (
    ReconcileRequest,
    AlreadyPaid,
    Reconciled,
    NewSessionIssued,
    Settlement,
    FailureKind,
    ReconcileError,
)
from paysettle.reconcile._locks import OrderLocks
from paysettle.reconcile._notify import Notifier, NullNotifier, HttpNotifier, notifier_from
from paysettle.reconcile._engine import ReconciliationEngine

__all__ = (
    # Types
    "ReconcileRequest",
    "AlreadyPaid",
    "Reconciled",
    "NewSessionIssued",
    "Settlement",
    "FailureKind",
    "ReconcileError",
    # Serialization
    "OrderLocks",
    # Post-paid trigger
    "Notifier",
    "NullNotifier",
    "HttpNotifier",
    "notifier_from",
    # Engine
    "ReconciliationEngine",
)
