from collections.abc import Callable
from datetime import datetime

import pytest

from paysettle.gateway import MemoryGateway, ReturnUrls
from paysettle.ledger import MemoryLedger
from paysettle.orders import (
    MemoryOrderStore,
    Order,
    OrderLine,
    OrderStatus,
    PaymentStatus,
)
from paysettle.reconcile import ReconciliationEngine

BASE_URL = "https://shop.test"


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.paid: list[str] = []
        self.fail = fail

    async def order_paid(self, order_id: str) -> None:
        self.paid.append(order_id)
        if self.fail:
            raise RuntimeError("mailer down")


type OrderFactory = Callable[..., Order]


def _make_order(
    order_id: str = "O1",
    *,
    lines: tuple[OrderLine, ...] | None = None,
    status: OrderStatus = OrderStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    session_id: str | None = None,
    intent_id: str | None = None,
    shipping_cents: int = 0,
    tax_cents: int = 0,
    discount_cents: int = 0,
) -> Order:
    if lines is None:
        lines = (OrderLine.of("mic-1", "Ribbon Mic", 1, 5000),)
    subtotal = sum(line.line_total_cents for line in lines)
    now = datetime(2026, 1, 1, 12, 0, 0)
    return Order(
        id=order_id,
        order_number=f"TES-{order_id}",
        email="buyer@example.com",
        currency="usd",
        status=status,
        payment_status=payment_status,
        subtotal_cents=subtotal,
        shipping_cents=shipping_cents,
        tax_cents=tax_cents,
        discount_cents=discount_cents,
        total_cents=subtotal + shipping_cents + tax_cents - discount_cents,
        lines=lines,
        stripe_session_id=session_id,
        stripe_payment_intent_id=intent_id,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def make_order() -> OrderFactory:
    return _make_order


@pytest.fixture
def store() -> MemoryOrderStore:
    return MemoryOrderStore()


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def ledger() -> MemoryLedger:
    return MemoryLedger()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine(
    store: MemoryOrderStore,
    gateway: MemoryGateway,
    ledger: MemoryLedger,
    notifier: RecordingNotifier,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        store, gateway, ledger, ReturnUrls(BASE_URL), notifier=notifier
    )
