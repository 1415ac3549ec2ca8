import asyncio

import pytest
from kungfu import Ok, Error

from paysettle import VersionConflict
from paysettle.gateway import ReturnUrls
from paysettle.orders import (
    MemoryOrderStore,
    OrderLine,
    OrderStatus,
    PaymentStatus,
)
from paysettle.reconcile import (
    AlreadyPaid,
    FailureKind,
    NewSessionIssued,
    OrderLocks,
    ReconcileError,
    Reconciled,
    ReconciliationEngine,
)

from conftest import BASE_URL


async def _issue(engine, gateway, order_id="O1") -> NewSessionIssued:
    match await engine.reconcile(order_id):
        case Ok(NewSessionIssued() as issued):
            return issued
        case other:
            pytest.fail(f"expected NewSessionIssued, got {other!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# Scenarios
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_first_retry_issues_new_session(engine, store, gateway, ledger, make_order):
    store.put(make_order("O1"))

    issued = await _issue(engine, gateway)

    assert issued.retry_url == f"https://checkout.test/{issued.session_id}"
    assert issued.attempt_number == 1
    assert issued.reused is False
    assert gateway.create_calls == 1

    rows = (await ledger.attempts("O1")).value
    assert len(rows) == 1
    assert rows[0].attempt_number == 1
    assert rows[0].success is False
    assert rows[0].new_session_id == issued.session_id
    assert rows[0].retry_url == issued.retry_url

    order = (await store.get_order("O1")).value
    assert order.payment_status == PaymentStatus.PENDING
    assert order.status == OrderStatus.PENDING
    assert order.stripe_session_id == issued.session_id


@pytest.mark.asyncio
async def test_completed_session_reconciles(
    engine, store, gateway, ledger, notifier, make_order
):
    store.put(make_order("O1"))
    issued = await _issue(engine, gateway)
    gateway.complete(issued.session_id, intent_id="pi_123")

    match await engine.reconcile("O1", issued.session_id):
        case Ok(Reconciled(order=order, payment_intent_id=pi, attempt_number=n)):
            assert pi == "pi_123"
            assert n == 2
            assert order.status == OrderStatus.PROCESSING
            assert order.payment_status == PaymentStatus.PAID
        case other:
            pytest.fail(f"expected Reconciled, got {other!r}")

    stored = (await store.get_order("O1")).value
    assert stored.stripe_payment_intent_id == "pi_123"
    assert stored.state.is_paid

    rows = (await ledger.attempts("O1")).value
    assert [(r.attempt_number, r.success) for r in rows] == [(1, False), (2, True)]
    await engine.drain()
    assert notifier.paid == ["O1"]
    assert gateway.create_calls == 1


@pytest.mark.asyncio
async def test_already_paid_is_idempotent(engine, store, gateway, ledger, make_order):
    store.put(make_order(
        "O2",
        status=OrderStatus.PROCESSING,
        payment_status=PaymentStatus.PAID,
        session_id="cs_paid",
        intent_id="pi_paid",
    ))

    for session_id in (None, "cs_paid", "cs_other"):
        result = await engine.reconcile("O2", session_id)
        assert isinstance(result, Ok)
        assert isinstance(result.value, AlreadyPaid)

    order = (await store.get_order("O2")).value
    assert order.stripe_session_id == "cs_paid"
    assert order.version == 1
    assert gateway.get_calls == 0
    assert gateway.create_calls == 0
    assert (await ledger.attempts("O2")).value == []


@pytest.mark.asyncio
async def test_missing_order_fails_hard(engine, ledger, gateway):
    match await engine.reconcile("ghost"):
        case Error(ReconcileError(kind=FailureKind.ORDER_NOT_FOUND) as err):
            assert not err.retryable
        case other:
            pytest.fail(f"expected ORDER_NOT_FOUND, got {other!r}")

    rows = (await ledger.attempts("ghost")).value
    assert [(r.success, r.new_session_id) for r in rows] == [(False, None)]
    assert gateway.create_calls == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_concurrent_retries_mint_one_session(engine, store, gateway, ledger, make_order):
    store.put(make_order("O1"))

    first, second = await asyncio.gather(
        engine.reconcile("O1"),
        engine.reconcile("O1"),
    )

    issued = [first.value, second.value]
    assert all(isinstance(i, NewSessionIssued) for i in issued)
    assert gateway.sessions_created == 1
    assert issued[0].session_id == issued[1].session_id
    assert sorted(i.reused for i in issued) == [False, True]

    rows = (await ledger.attempts("O1")).value
    assert [r.attempt_number for r in rows] == [1, 2]
    assert all(r.success is False for r in rows)


@pytest.mark.asyncio
async def test_stale_caller_gets_current_open_session(engine, store, gateway, make_order):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    first = (await engine.reconcile("O1", "cs_initial")).value
    assert first.reused is False

    # Second tab still holds the initial session
    match await engine.reconcile("O1", "cs_initial"):
        case Ok(NewSessionIssued(session_id=sid, reused=True)):
            assert sid == first.session_id
        case other:
            pytest.fail(f"expected reused session, got {other!r}")

    assert gateway.sessions_created == 1


@pytest.mark.asyncio
async def test_version_conflict_is_retryable(gateway, ledger, make_order):
    class RacingStore(MemoryOrderStore):
        async def update_payment_fields(self, order_id, *, expected_version, **fields):
            return Error(VersionConflict(order_id, expected_version, expected_version + 1))

    store = RacingStore()
    store.put(make_order("O1"))
    engine = ReconciliationEngine(store, gateway, ledger, ReturnUrls(BASE_URL))

    match await engine.reconcile("O1"):
        case Error(ReconcileError(kind=FailureKind.CONFLICT) as err):
            assert err.retryable
        case other:
            pytest.fail(f"expected CONFLICT, got {other!r}")

    rows = (await ledger.attempts("O1")).value
    assert rows[0].success is False


# ═══════════════════════════════════════════════════════════════════════════════
# Session Handling
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_new_session_charges_stored_snapshot(engine, store, gateway, make_order):
    catalog = {"mic-1": 5000}
    line = OrderLine.of("mic-1", "Ribbon Mic", 1, catalog["mic-1"])
    store.put(make_order("O1", lines=(line,)))

    catalog["mic-1"] = 9900
    await _issue(engine, gateway)

    request = gateway.requests[-1]
    assert request.amount_cents == 5000
    assert [l.unit_price_cents for l in request.lines] == [5000]


@pytest.mark.asyncio
async def test_new_session_charges_order_total(engine, store, gateway, make_order):
    order = make_order("O1", shipping_cents=800, tax_cents=410, discount_cents=500)
    store.put(order)

    await _issue(engine, gateway)

    request = gateway.requests[-1]
    assert request.amount_cents == order.total_cents == 5710
    assert (request.shipping_cents, request.tax_cents, request.discount_cents) == (800, 410, 500)


@pytest.mark.asyncio
async def test_session_metadata_tags_order_and_attempt(engine, store, gateway, make_order):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.expire("cs_initial")

    await _issue(engine, gateway)

    request = gateway.requests[-1]
    assert request.metadata == {
        "order_id": "O1",
        "retry_attempt": "1",
        "original_session_id": "cs_initial",
    }
    assert request.idempotency_key == "retry:O1:1"
    assert request.success_url == f"{BASE_URL}/order-success?session_id={{CHECKOUT_SESSION_ID}}"
    assert request.cancel_url == f"{BASE_URL}/orders/O1?retry=failed"


@pytest.mark.asyncio
async def test_callers_own_open_session_gets_replaced(engine, store, gateway, make_order):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))

    match await engine.reconcile("O1", "cs_initial"):
        case Ok(NewSessionIssued(session_id=sid, reused=False)):
            assert sid != "cs_initial"
        case other:
            pytest.fail(f"expected new session, got {other!r}")

    assert (await store.get_order("O1")).value.stripe_session_id == sid


@pytest.mark.asyncio
async def test_initial_checkout_session_without_metadata_settles(
    engine, store, gateway, make_order
):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial", intent_id="pi_1")

    result = await engine.reconcile("O1", "cs_initial")

    assert isinstance(result.value, Reconciled)
    assert gateway.create_calls == 0


@pytest.mark.asyncio
async def test_foreign_session_never_marks_paid(engine, store, gateway, make_order):
    store.put(make_order("O1"))
    gateway.open("cs_foreign", metadata={"order_id": "SOMEONE-ELSE"})
    gateway.complete("cs_foreign")

    result = await engine.reconcile("O1", "cs_foreign")

    assert isinstance(result.value, NewSessionIssued)
    order = (await store.get_order("O1")).value
    assert not order.is_paid
    assert order.stripe_payment_intent_id is None


@pytest.mark.asyncio
async def test_lookup_failure_falls_through_to_new_session(engine, store, gateway, make_order):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.fail_next_get(1)

    result = await engine.reconcile("O1", "cs_initial")

    assert isinstance(result.value, NewSessionIssued)
    assert gateway.create_calls == 1


@pytest.mark.asyncio
async def test_missing_prior_session_falls_through(engine, store, gateway, make_order):
    store.put(make_order("O1"))

    result = await engine.reconcile("O1", "cs_never_existed")

    assert isinstance(result.value, NewSessionIssued)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("transient", "kind"),
    [(True, FailureKind.TRANSIENT_GATEWAY), (False, FailureKind.SESSION_CREATE_FAILED)],
)
async def test_create_failure_kinds(engine, store, gateway, ledger, make_order, transient, kind):
    store.put(make_order("O1"))
    gateway.fail_next_create(1, transient=transient)

    match await engine.reconcile("O1"):
        case Error(err):
            assert err.kind == kind
            assert err.retryable is transient
        case other:
            pytest.fail(f"expected failure, got {other!r}")

    rows = (await ledger.attempts("O1")).value
    assert [(r.success, r.new_session_id) for r in rows] == [(False, None)]
    order = (await store.get_order("O1")).value
    assert order.stripe_session_id is None
    assert order.version == 1


@pytest.mark.asyncio
async def test_confirm_only_lookup_failure_is_transient(
    engine, store, gateway, ledger, make_order
):
    store.put(make_order("O1", session_id=gateway.open("cs_retry", metadata={"order_id": "O1"})))
    gateway.fail_next_get(1)

    match await engine.reconcile("O1", "cs_retry", issue_new=False):
        case Error(ReconcileError(kind=FailureKind.TRANSIENT_GATEWAY) as err):
            assert err.retryable
        case other:
            pytest.fail(f"expected TRANSIENT_GATEWAY, got {other!r}")

    assert gateway.create_calls == 0
    assert (await store.get_order("O1")).value.stripe_session_id == "cs_retry"
    rows = (await ledger.attempts("O1")).value
    assert [(r.success, r.new_session_id) for r in rows] == [(False, None)]


@pytest.mark.asyncio
@pytest.mark.parametrize("state", ["open", "expired", "missing", "foreign"])
async def test_confirm_only_never_issues(engine, store, gateway, make_order, state):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    match state:
        case "expired":
            gateway.expire("cs_initial")
        case "missing":
            gateway.forget("cs_initial")
        case "foreign":
            gateway.open("cs_foreign", metadata={"order_id": "SOMEONE-ELSE"})
            gateway.complete("cs_foreign")
    session_id = "cs_foreign" if state == "foreign" else "cs_initial"

    match await engine.reconcile("O1", session_id, issue_new=False):
        case Error(ReconcileError(kind=FailureKind.SESSION_NOT_COMPLETE) as err):
            assert not err.retryable
        case other:
            pytest.fail(f"expected SESSION_NOT_COMPLETE, got {other!r}")

    order = (await store.get_order("O1")).value
    assert gateway.create_calls == 0
    assert order.stripe_session_id == "cs_initial"
    assert not order.is_paid


@pytest.mark.asyncio
async def test_confirm_only_settles_completed_session(engine, store, gateway, make_order):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial", intent_id="pi_1")

    result = await engine.reconcile("O1", "cs_initial", issue_new=False)

    assert isinstance(result.value, Reconciled)
    assert gateway.create_calls == 0


@pytest.mark.asyncio
async def test_refunded_order_is_invalid_state(engine, store, gateway, make_order):
    store.put(make_order(
        "O1", status=OrderStatus.REFUNDED, payment_status=PaymentStatus.REFUNDED
    ))

    match await engine.reconcile("O1"):
        case Error(ReconcileError(kind=FailureKind.INVALID_STATE) as err):
            assert not err.retryable
        case other:
            pytest.fail(f"expected INVALID_STATE, got {other!r}")
    assert gateway.create_calls == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Post-paid Trigger
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_notifier_failure_keeps_payment(engine, store, gateway, notifier, make_order):
    notifier.fail = True
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial", intent_id="pi_1")

    result = await engine.reconcile("O1", "cs_initial")

    assert isinstance(result.value, Reconciled)
    await engine.drain()
    assert notifier.paid == ["O1"]
    assert (await store.get_order("O1")).value.is_paid


@pytest.mark.asyncio
async def test_notifier_fires_once(engine, store, gateway, notifier, make_order):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial")

    for _ in range(3):
        await engine.reconcile("O1", "cs_initial")

    await engine.drain()
    assert notifier.paid == ["O1"]


@pytest.mark.asyncio
async def test_slow_notifier_does_not_delay_settlement(store, gateway, ledger, make_order):
    release = asyncio.Event()
    delivered: list[str] = []

    class SlowNotifier:
        async def order_paid(self, order_id: str) -> None:
            await release.wait()
            delivered.append(order_id)

    engine = ReconciliationEngine(
        store, gateway, ledger, ReturnUrls(BASE_URL), notifier=SlowNotifier()
    )
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial")

    result = await engine.reconcile("O1", "cs_initial")

    assert isinstance(result.value, Reconciled)
    assert delivered == []

    release.set()
    await engine.drain()
    assert delivered == ["O1"]


@pytest.mark.asyncio
async def test_order_locks_released_after_use():
    locks = OrderLocks()

    async with locks.hold("O1"):
        assert len(locks) == 1
        async with locks.hold("O2"):
            assert len(locks) == 2

    assert len(locks) == 0
