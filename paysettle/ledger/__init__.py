"""
Ledger — append-only log of retry attempts per order.

    from paysettle import ledger as Ledger

    log = Ledger.MemoryLedger()
    n = (await log.next_attempt_number(order_id)).value       # 1, 2, 3, ...
    await log.append(order_id, n, "user initiated retry")     # success unknown
    await log.record_outcome(order_id, n, Ledger.AttemptOutcome.paid())
"""

from paysettle.ledger._types import (
    DEFAULT_REASON,
    AttemptOutcome,
    RetryAttempt,
)
from paysettle.ledger._ledger import (
    RetryLedger,
    MemoryLedger,
)
from paysettle.ledger._sqlalchemy import SQLAlchemyLedger

__all__ = (
    # Types
    "DEFAULT_REASON",
    "AttemptOutcome",
    "RetryAttempt",
    # Ledgers
    "RetryLedger",
    "MemoryLedger",
    "SQLAlchemyLedger",
)
