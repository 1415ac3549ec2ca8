"""
Orders — order snapshot, payment state machine, order store.

    from paysettle import orders as Orders

    store = Orders.MemoryOrderStore()
    created = await store.create_order(Orders.OrderDraft(
        order_number="TES-1001",
        email="buyer@example.com",
        lines=(Orders.OrderLine.of("mic-1", "Ribbon Mic", 1, 5000),),
    ))

State machine (status, payment_status):

    (pending, pending) ── session issued ──▶ (pending, pending)
    (pending, pending) ── settled ────────▶ (processing, paid)
    (*, paid)          ── already paid ───▶ no-op
"""

from paysettle.orders._types import (
    OrderStatus,
    PaymentStatus,
    MalformedOrder,
    InvalidTransition,
    OrderLine,
    PaymentEvent,
    PaymentState,
    PENDING,
    SETTLED,
    transition,
    Order,
    OrderDraft,
)
from paysettle.orders._store import (
    OrderStore,
    MemoryOrderStore,
)
from paysettle.orders._sqlalchemy import SQLAlchemyOrderStore

__all__ = (
    # Types
    "OrderStatus",
    "PaymentStatus",
    "MalformedOrder",
    "InvalidTransition",
    "OrderLine",
    "PaymentEvent",
    "PaymentState",
    "PENDING",
    "SETTLED",
    "transition",
    "Order",
    "OrderDraft",
    # Store
    "OrderStore",
    "MemoryOrderStore",
    "SQLAlchemyOrderStore",
)
