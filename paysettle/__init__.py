"""
paysettle — order payment retries reconciled against a hosted checkout.

    from paysettle import orders as Orders       # Order snapshot + state machine
    from paysettle import gateway as Gateway     # Checkout sessions (Stripe)
    from paysettle import ledger as Ledger       # Retry attempt log
    from paysettle import reconcile as R         # Reconciliation engine
    from paysettle import retry as Retry         # Backoff loop + cancellation
"""

from paysettle import graph
from paysettle import orders
from paysettle import gateway
from paysettle import ledger
from paysettle import reconcile
from paysettle import retry
from paysettle._types import (
    Lazy,
    StoreError,
    VersionConflict,
)

__version__ = "0.1.0"

__all__ = (
    "graph",
    "orders",
    "gateway",
    "ledger",
    "reconcile",
    "retry",
    "Lazy",
    "StoreError",
    "VersionConflict",
)
