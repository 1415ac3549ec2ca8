"""
Order types — persisted order snapshot and the payment state machine.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, auto


# ═══════════════════════════════════════════════════════════════════════════════
# Status Enums
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    """Fulfillment state."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    """
    Payment state, orthogonal to OrderStatus.

    Note: FAILED is reserved for gateway-reported hard declines.
    Reconciliation never writes it.
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Fulfillment states that require a settled payment
_REQUIRES_PAYMENT = frozenset(
    {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}
)


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class MalformedOrder(ValueError):
    """Order record violates a data invariant."""


class InvalidTransition(ValueError):
    """Requested (status, payment_status) change is not allowed."""

    def __init__(self, order_id: str, event: PaymentEvent, state: PaymentState) -> None:
        super().__init__(
            f"Order {order_id}: cannot apply {event.name} in state "
            f"({state.status.value}, {state.payment_status.value})"
        )
        self.order_id = order_id
        self.event = event
        self.state = state


# ═══════════════════════════════════════════════════════════════════════════════
# Line Snapshot
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class OrderLine:
    """
    Line item frozen at order creation.

    Note: Retries always charge these prices, never the current catalog.
    """

    product_id: str
    product_name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    variant_id: str | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise MalformedOrder(f"{self.product_name}: quantity must be positive")
        if self.unit_price_cents < 0:
            raise MalformedOrder(f"{self.product_name}: negative unit price")
        if self.line_total_cents != self.unit_price_cents * self.quantity:
            raise MalformedOrder(
                f"{self.product_name}: line total {self.line_total_cents} != "
                f"{self.unit_price_cents} x {self.quantity}"
            )

    @classmethod
    def of(
        cls,
        product_id: str,
        product_name: str,
        quantity: int,
        unit_price_cents: int,
        variant_id: str | None = None,
    ) -> OrderLine:
        return cls(
            product_id=product_id,
            product_name=product_name,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            line_total_cents=unit_price_cents * quantity,
            variant_id=variant_id,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# State Machine
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentEvent(Enum):
    """
    Events reconciliation may apply.

    SESSION_ISSUED: (pending, pending) → (pending, pending)
    SETTLED:        (pending, pending) → (processing, paid)
    """

    SESSION_ISSUED = auto()
    SETTLED = auto()


@dataclass(frozen=True, slots=True)
class PaymentState:
    status: OrderStatus
    payment_status: PaymentStatus

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID


PENDING = PaymentState(OrderStatus.PENDING, PaymentStatus.PENDING)
SETTLED = PaymentState(OrderStatus.PROCESSING, PaymentStatus.PAID)


def transition(order_id: str, state: PaymentState, event: PaymentEvent) -> PaymentState:
    """
    Next state for a reconciliation event.

    A paid order never moves; the engine short-circuits before calling this.
    An unpaid order that drifted (e.g. cancelled before paying) is pulled
    back to (pending, pending) when a fresh session is issued.
    """
    if state.is_paid:
        raise InvalidTransition(order_id, event, state)
    if state.payment_status == PaymentStatus.REFUNDED:
        raise InvalidTransition(order_id, event, state)

    match event:
        case PaymentEvent.SESSION_ISSUED:
            return PENDING
        case PaymentEvent.SETTLED:
            return SETTLED


# ═══════════════════════════════════════════════════════════════════════════════
# Order
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Order:
    """
    Persisted order.

    Invariants:
        total = subtotal + shipping + tax - discount, every amount >= 0
        processing/shipped/delivered only while payment_status == paid
    """

    id: str
    order_number: str
    email: str
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    lines: tuple[OrderLine, ...]
    stripe_session_id: str | None = None
    stripe_payment_intent_id: str | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        amounts = {
            "subtotal": self.subtotal_cents,
            "shipping": self.shipping_cents,
            "tax": self.tax_cents,
            "discount": self.discount_cents,
            "total": self.total_cents,
        }
        negative = [name for name, value in amounts.items() if value < 0]
        if negative:
            raise MalformedOrder(f"Order {self.id}: negative {', '.join(negative)}")

        expected = (
            self.subtotal_cents + self.shipping_cents + self.tax_cents - self.discount_cents
        )
        if self.total_cents != expected:
            raise MalformedOrder(
                f"Order {self.id}: total {self.total_cents} != {expected}"
            )

        if self.status in _REQUIRES_PAYMENT and self.payment_status != PaymentStatus.PAID:
            raise MalformedOrder(
                f"Order {self.id}: {self.status.value} while payment is "
                f"{self.payment_status.value}"
            )

    @property
    def state(self) -> PaymentState:
        return PaymentState(self.status, self.payment_status)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    def with_payment(
        self,
        state: PaymentState,
        *,
        session_id: str | None = None,
        intent_id: str | None = None,
    ) -> Order:
        """Copy with new payment fields; None keeps the existing reference."""
        return replace(
            self,
            status=state.status,
            payment_status=state.payment_status,
            stripe_session_id=session_id if session_id is not None else self.stripe_session_id,
            stripe_payment_intent_id=(
                intent_id if intent_id is not None else self.stripe_payment_intent_id
            ),
            version=self.version + 1,
            updated_at=datetime.now(),
        )


@dataclass(frozen=True, slots=True)
class OrderDraft:
    """
    Data for checkout initiation.

    Note: Amounts are computed by checkout; the store only snapshots them.
    """

    order_number: str
    email: str
    lines: tuple[OrderLine, ...]
    shipping_cents: int = 0
    tax_cents: int = 0
    discount_cents: int = 0
    currency: str = "usd"
    stripe_session_id: str | None = None

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.shipping_cents + self.tax_cents - self.discount_cents


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
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
)
