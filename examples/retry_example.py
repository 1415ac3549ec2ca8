"""
Retry Example — reconcile an unpaid order against the checkout gateway.

Run: python examples/retry_example.py

Everything runs against in-memory collaborators:
    1. first retry mints a checkout session
    2. buyer pays, second retry reconciles instead of charging again
    3. gateway down: controller backs off and gives up
"""

import asyncio
from datetime import datetime

from kungfu import Ok, Error

from paysettle import reconcile as R
from paysettle import retry as Retry
from paysettle.gateway import MemoryGateway, ReturnUrls
from paysettle.ledger import MemoryLedger
from paysettle.log import configure_logging
from paysettle.orders import MemoryOrderStore, Order, OrderLine, OrderStatus, PaymentStatus


def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def pending_order(order_id: str) -> Order:
    line = OrderLine.of("mic-1", "Ribbon Mic", 1, 5000)
    now = datetime.now()
    return Order(
        id=order_id,
        order_number=f"TES-{order_id}",
        email="buyer@example.com",
        currency="usd",
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        subtotal_cents=5000,
        shipping_cents=0,
        tax_cents=0,
        discount_cents=0,
        total_cents=5000,
        lines=(line,),
        created_at=now,
        updated_at=now,
    )


async def order_paid(order_id: str) -> None:
    print(f"  [MAIL] confirmation queued for {order_id}")


async def main() -> None:
    configure_logging("WARNING")

    store = MemoryOrderStore()
    gateway = MemoryGateway()
    ledger = MemoryLedger()
    engine = R.ReconciliationEngine(
        store,
        gateway,
        ledger,
        ReturnUrls("https://shop.example.com"),
        notifier=R.notifier_from(order_paid),
    )
    controller = Retry.RetryController(
        engine,
        Retry.RetryPolicy().with_max_retries(3).with_base_delay(seconds=0.05),
    )

    banner("Payment retry")

    # 1. No prior session, new checkout
    store.put(pending_order("O1"))
    print("\n1. First retry:")
    session_id = None
    match await controller.run("O1"):
        case Ok(Retry.Redirect(retry_url=url, session_id=sid)):
            session_id = sid
            print(f"   redirect to {url}")
        case other:
            print(f"   unexpected: {other!r}")

    # 2. Buyer paid, came back with the session id
    assert session_id is not None
    gateway.complete(session_id, intent_id="pi_123")
    print("\n2. Retry after paying:")
    match await controller.run("O1", session_id):
        case Ok(Retry.Settled(settlement=R.Reconciled(payment_intent_id=pi))):
            print(f"   reconciled, payment intent {pi}")
        case other:
            print(f"   unexpected: {other!r}")
    await engine.drain()
    print(f"   sessions created: {gateway.sessions_created} (no second charge)")

    # 3. Gateway down on every call
    store.put(pending_order("O3"))
    gateway.fail_next_create(3, transient=True)
    print("\n3. Gateway unavailable:")
    match await controller.run("O3"):
        case Error(Retry.GaveUp(attempts=n, message=msg)):
            print(f"   gave up after {n} attempts: {msg}")
        case other:
            print(f"   unexpected: {other!r}")

    rows = (await ledger.attempts("O3")).value
    print(f"   ledger: {[(r.attempt_number, r.success) for r in rows]}")


if __name__ == "__main__":
    asyncio.run(main())
