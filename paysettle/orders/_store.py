"""
Order store — typed storage protocol.

All methods return Result for explicit error handling.
Expected states (not found, lost version race) are values, not exceptions.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Protocol

from kungfu import Result, Ok, Error

from paysettle._types import StoreError, VersionConflict
from paysettle.orders._types import (
    Order,
    OrderDraft,
    OrderStatus,
    PaymentStatus,
    PaymentState,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Store Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStore(Protocol):
    """
    Order store protocol.

    Note: update_payment_fields is a compare-and-swap on Order.version.
    Returns Error(VersionConflict) when another writer got there first.
    """

    async def get_order(self, order_id: str) -> Result[Order | None, StoreError]:
        """Get order with its line snapshot. Returns Ok(None) if not found."""
        ...

    async def find_by_session(
        self, session_id: str
    ) -> Result[Order | None, StoreError]:
        """Find the order whose current gateway session is session_id."""
        ...

    async def create_order(self, draft: OrderDraft) -> Result[Order, StoreError]:
        """Persist a new order in (pending, pending)."""
        ...

    async def update_payment_fields(
        self,
        order_id: str,
        *,
        expected_version: int,
        payment_status: PaymentStatus,
        status: OrderStatus,
        session_id: str | None = None,
        intent_id: str | None = None,
    ) -> Result[Order, StoreError | VersionConflict]:
        """Write payment fields if the stored version still matches."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Store
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryOrderStore:
    """
    In-memory order store.

    Note: Только для single-instance / тестов.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def get_order(self, order_id: str) -> Result[Order | None, StoreError]:
        async with self._lock:
            return Ok(self._orders.get(order_id))

    async def find_by_session(
        self, session_id: str
    ) -> Result[Order | None, StoreError]:
        async with self._lock:
            for order in self._orders.values():
                if order.stripe_session_id == session_id:
                    return Ok(order)
            return Ok(None)

    async def create_order(self, draft: OrderDraft) -> Result[Order, StoreError]:
        async with self._lock:
            if any(o.order_number == draft.order_number for o in self._orders.values()):
                return Error(StoreError(f"Duplicate order number: {draft.order_number}"))

            now = datetime.now()
            order = Order(
                id=str(uuid.uuid4()),
                order_number=draft.order_number,
                email=draft.email,
                currency=draft.currency,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                subtotal_cents=draft.subtotal_cents,
                shipping_cents=draft.shipping_cents,
                tax_cents=draft.tax_cents,
                discount_cents=draft.discount_cents,
                total_cents=draft.total_cents,
                lines=draft.lines,
                stripe_session_id=draft.stripe_session_id,
                created_at=now,
                updated_at=now,
            )
            self._orders[order.id] = order
            return Ok(order)

    async def update_payment_fields(
        self,
        order_id: str,
        *,
        expected_version: int,
        payment_status: PaymentStatus,
        status: OrderStatus,
        session_id: str | None = None,
        intent_id: str | None = None,
    ) -> Result[Order, StoreError | VersionConflict]:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                return Error(StoreError(f"Order not found: {order_id}"))
            if current.version != expected_version:
                return Error(VersionConflict(order_id, expected_version, current.version))

            updated = current.with_payment(
                PaymentState(status, payment_status),
                session_id=session_id,
                intent_id=intent_id,
            )
            self._orders[order_id] = updated
            return Ok(updated)

    def put(self, order: Order) -> None:
        """Seed an order as-is (fixtures, imports)."""
        self._orders[order.id] = order


__all__ = (
    "OrderStore",
    "MemoryOrderStore",
)
