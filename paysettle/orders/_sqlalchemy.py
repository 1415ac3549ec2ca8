"""
SQLAlchemy order store.

Usage:
    session_factory, engine = await create_database(settings.database_url)
    store = SQLAlchemyOrderStore(session_factory)

    match await store.get_order(order_id):
        case Ok(None): ...          # not found
        case Ok(order): ...
        case Error(err): ...        # StoreError
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kungfu import Result, Ok, Error

from paysettle._types import StoreError, VersionConflict
from paysettle.db import OrderTable, OrderItemTable
from paysettle.orders._types import (
    MalformedOrder,
    Order,
    OrderDraft,
    OrderLine,
    OrderStatus,
    PaymentStatus,
)


class SQLAlchemyOrderStore:
    """
    Order store over async SQLAlchemy.

    Note: Backend exceptions become Error(StoreError). MalformedOrder is NOT
    caught here: a row that violates the money invariant is a data bug and
    must surface as an unexpected failure.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_order(self, order_id: str) -> Result[Order | None, StoreError]:
        try:
            async with self._session_factory() as session:
                row = await session.get(OrderTable, order_id)
                if row is None:
                    return Ok(None)
                return Ok(_to_order(row))
        except MalformedOrder:
            raise
        except Exception as e:
            return Error(StoreError(f"Failed to get order {order_id}: {e}", e))

    async def find_by_session(
        self, session_id: str
    ) -> Result[Order | None, StoreError]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(OrderTable).where(OrderTable.stripe_session_id == session_id)
                )
                row = result.scalar_one_or_none()
                return Ok(_to_order(row) if row is not None else None)
        except MalformedOrder:
            raise
        except Exception as e:
            return Error(StoreError(f"Failed to find order by session: {e}", e))

    async def create_order(self, draft: OrderDraft) -> Result[Order, StoreError]:
        now = datetime.now()
        order_id = str(uuid.uuid4())
        try:
            async with self._session_factory() as session:
                row = OrderTable(
                    id=order_id,
                    order_number=draft.order_number,
                    email=draft.email,
                    currency=draft.currency,
                    status=OrderStatus.PENDING.value,
                    payment_status=PaymentStatus.PENDING.value,
                    subtotal_cents=draft.subtotal_cents,
                    shipping_cents=draft.shipping_cents,
                    tax_cents=draft.tax_cents,
                    discount_cents=draft.discount_cents,
                    total_cents=draft.total_cents,
                    stripe_session_id=draft.stripe_session_id,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                row.items = [
                    OrderItemTable(
                        position=position,
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        product_name=line.product_name,
                        quantity=line.quantity,
                        unit_price_cents=line.unit_price_cents,
                        total_price_cents=line.line_total_cents,
                    )
                    for position, line in enumerate(draft.lines)
                ]
                session.add(row)
                await session.commit()
        except IntegrityError as e:
            return Error(StoreError(f"Duplicate order number: {draft.order_number}", e))
        except Exception as e:
            return Error(StoreError(f"Failed to create order: {e}", e))

        return await self._reload(order_id)

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
        values: dict[str, Any] = {
            "payment_status": payment_status.value,
            "status": status.value,
            "version": OrderTable.version + 1,
            "updated_at": datetime.now(),
        }
        if session_id is not None:
            values["stripe_session_id"] = session_id
        if intent_id is not None:
            values["stripe_payment_intent_id"] = intent_id

        try:
            async with self._session_factory() as session:
                stmt = (
                    update(OrderTable)
                    .where(
                        OrderTable.id == order_id,
                        OrderTable.version == expected_version,
                    )
                    .values(**values)
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                written = cursor.rowcount
                await session.commit()

                if written == 0:
                    row = await session.get(OrderTable, order_id)
                    if row is None:
                        return Error(StoreError(f"Order not found: {order_id}"))
                    return Error(VersionConflict(order_id, expected_version, row.version))
        except Exception as e:
            return Error(StoreError(f"Failed to update order {order_id}: {e}", e))

        return await self._reload(order_id)

    async def _reload(self, order_id: str) -> Result[Order, StoreError]:
        match await self.get_order(order_id):
            case Ok(None):
                return Error(StoreError(f"Order vanished: {order_id}"))
            case Ok(order):
                return Ok(order)
            case Error(err):
                return Error(err)


def _to_order(row: OrderTable) -> Order:
    """Convert row (with items) to Order."""
    return Order(
        id=row.id,
        order_number=row.order_number,
        email=row.email,
        currency=row.currency,
        status=OrderStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        subtotal_cents=row.subtotal_cents,
        shipping_cents=row.shipping_cents,
        tax_cents=row.tax_cents,
        discount_cents=row.discount_cents,
        total_cents=row.total_cents,
        lines=tuple(
            OrderLine(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=item.total_price_cents,
                variant_id=item.variant_id,
            )
            for item in row.items
        ),
        stripe_session_id=row.stripe_session_id,
        stripe_payment_intent_id=row.stripe_payment_intent_id,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


__all__ = ("SQLAlchemyOrderStore",)
