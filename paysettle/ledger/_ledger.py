"""
Retry ledger — append-only attempt log.

Invariant: per order, attempt numbers are exactly 1..N with no gaps.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Protocol

from kungfu import Result, Ok, Error

from paysettle._types import StoreError
from paysettle.ledger._types import DEFAULT_REASON, AttemptOutcome, RetryAttempt


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class RetryLedger(Protocol):
    """
    Retry ledger protocol.

    Note: next_attempt_number + append are not atomic together. Callers
    serialize per order (the reconciliation engine holds the order lock);
    append still rejects a number that would break the sequence.
    """

    async def next_attempt_number(self, order_id: str) -> Result[int, StoreError]:
        """1 + highest recorded attempt number (1 for a fresh order)."""
        ...

    async def append(
        self,
        order_id: str,
        attempt_number: int,
        reason: str = DEFAULT_REASON,
    ) -> Result[RetryAttempt, StoreError]:
        """Open a row with unknown outcome."""
        ...

    async def record_outcome(
        self,
        order_id: str,
        attempt_number: int,
        outcome: AttemptOutcome,
    ) -> Result[RetryAttempt, StoreError]:
        """Set the outcome. Allowed exactly once per row."""
        ...

    async def attempts(self, order_id: str) -> Result[list[RetryAttempt], StoreError]:
        """All rows for an order, by attempt number."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryLedger:
    """In-memory ledger for tests and single-process runs."""

    def __init__(self) -> None:
        self._rows: dict[str, list[RetryAttempt]] = {}
        self._lock = asyncio.Lock()

    async def next_attempt_number(self, order_id: str) -> Result[int, StoreError]:
        async with self._lock:
            return Ok(len(self._rows.get(order_id, ())) + 1)

    async def append(
        self,
        order_id: str,
        attempt_number: int,
        reason: str = DEFAULT_REASON,
    ) -> Result[RetryAttempt, StoreError]:
        async with self._lock:
            rows = self._rows.setdefault(order_id, [])
            expected = len(rows) + 1
            if attempt_number != expected:
                return Error(StoreError(
                    f"Order {order_id}: attempt {attempt_number} out of sequence "
                    f"(next is {expected})"
                ))

            row = RetryAttempt(
                order_id=order_id,
                attempt_number=attempt_number,
                attempted_at=datetime.now(),
                reason=reason,
            )
            rows.append(row)
            return Ok(row)

    async def record_outcome(
        self,
        order_id: str,
        attempt_number: int,
        outcome: AttemptOutcome,
    ) -> Result[RetryAttempt, StoreError]:
        async with self._lock:
            rows = self._rows.get(order_id, [])
            if not 1 <= attempt_number <= len(rows):
                return Error(StoreError(
                    f"Order {order_id}: no attempt {attempt_number}"
                ))

            row = rows[attempt_number - 1]
            if row.settled:
                return Error(StoreError(
                    f"Order {order_id}: attempt {attempt_number} already recorded"
                ))

            updated = row.with_outcome(outcome)
            rows[attempt_number - 1] = updated
            return Ok(updated)

    async def attempts(self, order_id: str) -> Result[list[RetryAttempt], StoreError]:
        async with self._lock:
            return Ok(list(self._rows.get(order_id, ())))


__all__ = (
    "RetryLedger",
    "MemoryLedger",
)
