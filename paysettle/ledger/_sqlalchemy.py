"""
SQLAlchemy retry ledger over the payment_retry_logs table.

Usage:
    session_factory, engine = await create_database(settings.database_url)
    ledger = SQLAlchemyLedger(session_factory)
"""

from datetime import datetime
from typing import Any, cast

from sqlalchemy import func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kungfu import Result, Ok, Error

from paysettle._types import StoreError
from paysettle.db import RetryAttemptTable
from paysettle.ledger._types import DEFAULT_REASON, AttemptOutcome, RetryAttempt


class SQLAlchemyLedger:
    """
    Retry ledger over async SQLAlchemy.

    Note: UNIQUE(order_id, attempt_number) backs the sequence check when
    two processes race on the same order.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def next_attempt_number(self, order_id: str) -> Result[int, StoreError]:
        try:
            async with self._session_factory() as session:
                return Ok(await _max_attempt(session, order_id) + 1)
        except Exception as e:
            return Error(StoreError(f"Failed to read ledger for {order_id}: {e}", e))

    async def append(
        self,
        order_id: str,
        attempt_number: int,
        reason: str = DEFAULT_REASON,
    ) -> Result[RetryAttempt, StoreError]:
        try:
            async with self._session_factory() as session:
                expected = await _max_attempt(session, order_id) + 1
                if attempt_number != expected:
                    return Error(StoreError(
                        f"Order {order_id}: attempt {attempt_number} out of sequence "
                        f"(next is {expected})"
                    ))

                row = RetryAttemptTable(
                    order_id=order_id,
                    attempt_number=attempt_number,
                    attempted_at=datetime.now(),
                    reason=reason,
                )
                session.add(row)
                await session.commit()
                return Ok(_to_attempt(row))
        except IntegrityError as e:
            return Error(StoreError(
                f"Order {order_id}: attempt {attempt_number} already taken", e
            ))
        except Exception as e:
            return Error(StoreError(f"Failed to append attempt: {e}", e))

    async def record_outcome(
        self,
        order_id: str,
        attempt_number: int,
        outcome: AttemptOutcome,
    ) -> Result[RetryAttempt, StoreError]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    update(RetryAttemptTable)
                    .where(
                        RetryAttemptTable.order_id == order_id,
                        RetryAttemptTable.attempt_number == attempt_number,
                        RetryAttemptTable.success.is_(None),
                    )
                    .values(
                        success=outcome.success,
                        new_session_id=outcome.new_session_id,
                        retry_url=outcome.retry_url,
                        error=outcome.error,
                    )
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                recorded = cursor.rowcount
                await session.commit()

                row = await _get_row(session, order_id, attempt_number)
                if row is None:
                    return Error(StoreError(f"Order {order_id}: no attempt {attempt_number}"))
                if recorded == 0:
                    return Error(StoreError(
                        f"Order {order_id}: attempt {attempt_number} already recorded"
                    ))
                return Ok(_to_attempt(row))
        except Exception as e:
            return Error(StoreError(f"Failed to record outcome: {e}", e))

    async def attempts(self, order_id: str) -> Result[list[RetryAttempt], StoreError]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(RetryAttemptTable)
                    .where(RetryAttemptTable.order_id == order_id)
                    .order_by(RetryAttemptTable.attempt_number)
                )
                return Ok([_to_attempt(row) for row in result.scalars()])
        except Exception as e:
            return Error(StoreError(f"Failed to list attempts for {order_id}: {e}", e))


async def _max_attempt(session: AsyncSession, order_id: str) -> int:
    result = await session.execute(
        select(func.max(RetryAttemptTable.attempt_number))
        .where(RetryAttemptTable.order_id == order_id)
    )
    return result.scalar_one_or_none() or 0


async def _get_row(
    session: AsyncSession, order_id: str, attempt_number: int
) -> RetryAttemptTable | None:
    result = await session.execute(
        select(RetryAttemptTable).where(
            RetryAttemptTable.order_id == order_id,
            RetryAttemptTable.attempt_number == attempt_number,
        )
    )
    return result.scalar_one_or_none()


def _to_attempt(row: RetryAttemptTable) -> RetryAttempt:
    return RetryAttempt(
        order_id=row.order_id,
        attempt_number=row.attempt_number,
        attempted_at=row.attempted_at,
        reason=row.reason,
        success=row.success,
        new_session_id=row.new_session_id,
        retry_url=row.retry_url,
        error=row.error,
    )


__all__ = ("SQLAlchemyLedger",)
