import pytest
import pytest_asyncio
from kungfu import Ok, Error

from paysettle import StoreError, VersionConflict
from paysettle.db import create_database
from paysettle.orders import (
    OrderDraft,
    OrderLine,
    OrderStatus,
    PaymentStatus,
    SQLAlchemyOrderStore,
)


@pytest_asyncio.fixture
async def sql_store():
    session_factory, engine = await create_database()
    yield SQLAlchemyOrderStore(session_factory)
    await engine.dispose()


def _draft(number: str = "TES-2001") -> OrderDraft:
    return OrderDraft(
        order_number=number,
        email="buyer@example.com",
        lines=(
            OrderLine.of("mic-1", "Ribbon Mic", 1, 5000),
            OrderLine.of("cab-1", "XLR Cable", 2, 1500, variant_id="3m"),
        ),
        shipping_cents=800,
    )


@pytest.mark.asyncio
async def test_create_and_load_keeps_line_snapshot(sql_store):
    created = (await sql_store.create_order(_draft())).value

    loaded = (await sql_store.get_order(created.id)).value

    assert loaded is not None
    assert loaded.total_cents == 8800
    assert [(l.product_id, l.quantity, l.unit_price_cents) for l in loaded.lines] == [
        ("mic-1", 1, 5000),
        ("cab-1", 2, 1500),
    ]
    assert loaded.lines[1].variant_id == "3m"
    assert loaded.status == OrderStatus.PENDING
    assert loaded.payment_status == PaymentStatus.PENDING
    assert loaded.version == 1


@pytest.mark.asyncio
async def test_missing_order_is_ok_none(sql_store):
    assert (await sql_store.get_order("nope")).value is None
    assert (await sql_store.find_by_session("cs_nope")).value is None


@pytest.mark.asyncio
async def test_duplicate_order_number(sql_store):
    await sql_store.create_order(_draft())

    match await sql_store.create_order(_draft()):
        case Error(StoreError()):
            pass
        case other:
            pytest.fail(f"expected StoreError, got {other!r}")


@pytest.mark.asyncio
async def test_update_payment_fields_with_version_check(sql_store):
    order = (await sql_store.create_order(_draft())).value

    issued = await sql_store.update_payment_fields(
        order.id,
        expected_version=1,
        payment_status=PaymentStatus.PENDING,
        status=OrderStatus.PENDING,
        session_id="cs_9",
    )
    match issued:
        case Ok(updated):
            assert updated.version == 2
            assert updated.stripe_session_id == "cs_9"
        case Error(err):
            pytest.fail(str(err))

    stale = await sql_store.update_payment_fields(
        order.id,
        expected_version=1,
        payment_status=PaymentStatus.PAID,
        status=OrderStatus.PROCESSING,
        intent_id="pi_9",
    )
    match stale:
        case Error(VersionConflict(actual_version=2)):
            pass
        case other:
            pytest.fail(f"expected VersionConflict, got {other!r}")

    paid = (await sql_store.update_payment_fields(
        order.id,
        expected_version=2,
        payment_status=PaymentStatus.PAID,
        status=OrderStatus.PROCESSING,
        intent_id="pi_9",
    )).value
    assert paid.is_paid
    assert paid.stripe_session_id == "cs_9"
    assert paid.stripe_payment_intent_id == "pi_9"
    assert (await sql_store.find_by_session("cs_9")).value.id == order.id


@pytest.mark.asyncio
async def test_update_unknown_order(sql_store):
    result = await sql_store.update_payment_fields(
        "nope",
        expected_version=1,
        payment_status=PaymentStatus.PENDING,
        status=OrderStatus.PENDING,
    )
    match result:
        case Error(StoreError(message=msg)):
            assert "not found" in msg
        case other:
            pytest.fail(f"expected StoreError, got {other!r}")
