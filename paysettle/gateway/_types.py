"""
Gateway types — checkout session states and requests.

Session retrieval is a closed union:

    OpenSession | CompleteSession | ExpiredSession | MissingSession

Only CompleteSession can ever mark an order paid.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from kungfu import Result

from paysettle.orders import Order, OrderLine


# ═══════════════════════════════════════════════════════════════════════════════
# Session States
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class OpenSession:
    """Checkout still waiting for the buyer."""

    id: str
    url: str | None
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CompleteSession:
    """Checkout finished and paid."""

    id: str
    payment_intent_id: str | None
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExpiredSession:
    """Checkout expired; the url is dead."""

    id: str


@dataclass(frozen=True, slots=True)
class MissingSession:
    """Gateway does not know this session id."""

    id: str


type SessionState = OpenSession | CompleteSession | ExpiredSession | MissingSession


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class GatewayError:
    """
    Gateway call failed.

    transient: network error, rate limit or 5xx — worth retrying.
    Everything else (bad request, auth) is a hard failure.
    """

    message: str
    transient: bool
    cause: Exception | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Session Creation
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    """
    Everything the gateway needs to mint a session.

    Note: Built from the stored order snapshot only (see from_order). The
    charge is lines + shipping + tax - discount, i.e. the stored order total.
    """

    order_id: str
    order_number: str
    email: str
    currency: str
    lines: tuple[OrderLine, ...]
    success_url: str
    cancel_url: str
    metadata: Mapping[str, str]
    idempotency_key: str
    shipping_cents: int = 0
    tax_cents: int = 0
    discount_cents: int = 0

    @property
    def amount_cents(self) -> int:
        items = sum(line.line_total_cents for line in self.lines)
        return items + self.shipping_cents + self.tax_cents - self.discount_cents

    @classmethod
    def from_order(
        cls,
        order: Order,
        *,
        attempt_number: int,
        urls: ReturnUrls,
        original_session_id: str | None = None,
    ) -> CheckoutRequest:
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            email=order.email,
            currency=order.currency,
            lines=order.lines,
            success_url=urls.success_url(),
            cancel_url=urls.cancel_url(order.id),
            metadata={
                "order_id": order.id,
                "retry_attempt": str(attempt_number),
                "original_session_id": original_session_id or "",
            },
            idempotency_key=f"retry:{order.id}:{attempt_number}",
            shipping_cents=order.shipping_cents,
            tax_cents=order.tax_cents,
            discount_cents=order.discount_cents,
        )


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True, slots=True)
class ReturnUrls:
    """Where the hosted checkout sends the buyer back to."""

    base_url: str

    def success_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/order-success?session_id={{CHECKOUT_SESSION_ID}}"

    def cancel_url(self, order_id: str) -> str:
        return f"{self.base_url.rstrip('/')}/orders/{order_id}?retry=failed"


# ═══════════════════════════════════════════════════════════════════════════════
# Gateway Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentGateway(Protocol):
    """Hosted checkout API."""

    async def create_session(
        self, request: CheckoutRequest
    ) -> Result[CheckoutSession, GatewayError]:
        ...

    async def get_session(
        self, session_id: str
    ) -> Result[SessionState, GatewayError]:
        ...


__all__ = (
    "OpenSession",
    "CompleteSession",
    "ExpiredSession",
    "MissingSession",
    "SessionState",
    "GatewayError",
    "CheckoutRequest",
    "CheckoutSession",
    "ReturnUrls",
    "PaymentGateway",
)
