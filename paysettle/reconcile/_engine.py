"""
Reconciliation engine — runs the reconciliation graph under the order lock.
"""

from __future__ import annotations

import asyncio

import structlog
from structlog.contextvars import bound_contextvars

from kungfu import Result, Ok, Error

from paysettle import graph as G
from paysettle.gateway import PaymentGateway, ReturnUrls
from paysettle.ledger import DEFAULT_REASON, RetryLedger
from paysettle.orders import OrderStore
from paysettle.reconcile._graph import FinalOutcomeNode, ReconcileSpec
from paysettle.reconcile._locks import OrderLocks
from paysettle.reconcile._notify import Notifier, NullNotifier
from paysettle.reconcile._types import (
    AlreadyPaid,
    NewSessionIssued,
    ReconcileError,
    ReconcileRequest,
    Reconciled,
    Settlement,
)

log = structlog.get_logger(__name__)


class ReconciliationEngine:
    """
    Resolves an order against the gateway and applies at most one
    payment-field write.

    Example:
        engine = ReconciliationEngine(store, gateway, ledger, ReturnUrls(base_url))

        match await engine.reconcile(order_id, prior_session_id=session_id):
            case Ok(NewSessionIssued(retry_url=url)): redirect(url)
            case Ok(Reconciled() | AlreadyPaid()): show_receipt()
            case Error(err): ...

    Note: Expected states come back as values. Exceptions only escape for
    broken data (MalformedOrder) or bugs. The order-paid notifier runs as a
    background task; drain() waits for the ones still in flight.
    """

    def __init__(
        self,
        store: OrderStore,
        gateway: PaymentGateway,
        ledger: RetryLedger,
        urls: ReturnUrls,
        *,
        notifier: Notifier | None = None,
        locks: OrderLocks | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._ledger = ledger
        self._urls = urls
        self._notifier = notifier or NullNotifier()
        self._locks = locks or OrderLocks()
        self._graph = G.graph(FinalOutcomeNode)
        self._pending: set[asyncio.Task[None]] = set()

    async def reconcile(
        self,
        order_id: str,
        prior_session_id: str | None = None,
        *,
        attempt: int = 1,
        reason: str = DEFAULT_REASON,
        issue_new: bool = True,
    ) -> Result[Settlement, ReconcileError]:
        return await self.run(
            ReconcileRequest(order_id, prior_session_id, attempt, reason, issue_new)
        )

    async def run(self, request: ReconcileRequest) -> Result[Settlement, ReconcileError]:
        spec = ReconcileSpec(
            request=request,
            store=self._store,
            gateway=self._gateway,
            ledger=self._ledger,
            urls=self._urls,
        )

        with bound_contextvars(order_id=request.order_id, attempt=request.attempt):
            async with self._locks.hold(request.order_id):
                final = await self._graph(spec)
                result = final.to_result()

            _log_result(result)

            match result:
                case Ok(Reconciled() as settled):
                    self._notify(settled)
                case _:
                    pass

        return result

    async def drain(self) -> None:
        """Wait for in-flight order-paid notifications."""
        while self._pending:
            await asyncio.gather(*self._pending)

    def _notify(self, settled: Reconciled) -> None:
        task = asyncio.create_task(self._deliver(settled.order.id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, order_id: str) -> None:
        try:
            await self._notifier.order_paid(order_id)
        except Exception:
            log.exception("order_paid_notification_failed", order_id=order_id)


def _log_result(result: Result[Settlement, ReconcileError]) -> None:
    match result:
        case Ok(AlreadyPaid()):
            log.info("order_already_paid")
        case Ok(Reconciled(session_id=sid, payment_intent_id=pi, attempt_number=n)):
            log.info("order_settled", session_id=sid, payment_intent_id=pi, attempt_number=n)
        case Ok(NewSessionIssued(session_id=sid, reused=reused, attempt_number=n)):
            log.info("checkout_session_issued", session_id=sid, reused=reused, attempt_number=n)
        case Error(err):
            log.warning(
                "reconcile_failed",
                kind=err.kind.name,
                retryable=err.retryable,
                error=err.message,
                attempt_number=err.attempt_number,
            )
        case _:
            pass


__all__ = ("ReconciliationEngine",)
