"""
Reconciliation graph — ALL decisions as nodnod nodes.

Architecture:
    ReconcileSpec (injected)
         │
         ▼
    SpecNode ──▶ LoadOrderNode
                     │
         ┌───────────┼──────────────────────────────┐
         ▼           ▼                              │
    PaidOrderNode  AttemptNode (opens ledger row)   │
                     │                              │
                     ├── LedgerFailureNode          │
                     └── OpenedAttemptNode ─────────┤
                                                    ▼
                          MissingOrderNode / StoreFailureNode / UnpaidOrderNode
                                                                    │
                                             PriorSessionNode ◀─────┤
                                             CurrentSessionNode ◀───┘
                                                    │
                                                    ▼
                                            SessionVerdictNode
                                                    │
                   ┌────────────────┬───────────────┼────────────────┐
                   ▼                ▼               ▼                ▼
              SettleNode        ReuseNode       IssueNode      UnsettledNode
                   └──────── ReconcileOutcome (@polymorphic) ────────┘
                                                    │
                                                    ▼
                                           FinalOutcomeNode

Every node validates its own precondition and raises NodeError otherwise,
so exactly one outcome case survives per run. A paid order stops at
PaidOrderNode: no ledger row, no gateway call.

Note: no 'from __future__ import annotations' here, nodnod reads the
__compose__ type hints at runtime for dependency resolution.
"""

from dataclasses import dataclass
from enum import Enum, auto

import structlog
from nodnod import NodeError, polymorphic, case

from kungfu import Result, Ok, Error

from paysettle import graph as G
from paysettle._types import StoreError, VersionConflict
from paysettle.gateway import (
    CheckoutRequest,
    CompleteSession,
    GatewayError,
    OpenSession,
    PaymentGateway,
    ReturnUrls,
    SessionState,
)
from paysettle.ledger import AttemptOutcome, RetryAttempt, RetryLedger
from paysettle.orders import (
    InvalidTransition,
    Order,
    OrderStore,
    PaymentEvent,
    transition,
)
from paysettle.reconcile._types import (
    AlreadyPaid,
    FailureKind,
    NewSessionIssued,
    ReconcileError,
    ReconcileRequest,
    Reconciled,
    Settlement,
)

log = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Input (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ReconcileSpec:
    """One reconciliation call plus the collaborators it may touch."""

    request: ReconcileRequest
    store: OrderStore
    gateway: PaymentGateway
    ledger: RetryLedger
    urls: ReturnUrls


@G.node
class SpecNode:
    def __init__(self, spec: ReconcileSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, spec: ReconcileSpec) -> "SpecNode":
        return cls(spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Order
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class LoadOrderNode:
    """Fetches the order snapshot. Store failures are kept, not raised."""

    def __init__(
        self,
        order: Order | None,
        spec: ReconcileSpec,
        store_error: StoreError | None = None,
    ) -> None:
        self.order = order
        self.spec = spec
        self.store_error = store_error

    @classmethod
    async def __compose__(cls, spec_node: SpecNode) -> "LoadOrderNode":
        spec = spec_node.spec
        match await spec.store.get_order(spec.request.order_id):
            case Ok(order):
                return cls(order, spec)
            case Error(err):
                return cls(None, spec, store_error=err)


@G.node
class PaidOrderNode:
    """Validates: order exists and is already paid."""

    def __init__(self, order: Order) -> None:
        self.order = order

    @classmethod
    def __compose__(cls, load: LoadOrderNode) -> "PaidOrderNode":
        if load.order is None or not load.order.is_paid:
            raise NodeError("Not paid")
        return cls(load.order)


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger Row
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class AttemptNode:
    """
    Opens the ledger row for this call (success unknown).

    Note: Runs for every call except the already-paid short circuit, so a
    failed lookup still leaves a row behind.
    """

    def __init__(
        self,
        spec: ReconcileSpec,
        attempt: RetryAttempt | None,
        ledger_error: StoreError | None = None,
    ) -> None:
        self.spec = spec
        self.attempt = attempt
        self.ledger_error = ledger_error

    @classmethod
    async def __compose__(cls, load: LoadOrderNode) -> "AttemptNode":
        if load.order is not None and load.order.is_paid:
            raise NodeError("Already paid")

        spec = load.spec
        order_id = spec.request.order_id

        match await spec.ledger.next_attempt_number(order_id):
            case Error(err):
                return cls(spec, None, ledger_error=err)
            case Ok(number):
                pass

        match await spec.ledger.append(order_id, number, spec.request.reason):
            case Ok(attempt):
                return cls(spec, attempt)
            case Error(err):
                return cls(spec, None, ledger_error=err)


@G.node
class OpenedAttemptNode:
    """Validates: ledger row is open."""

    def __init__(self, attempt: RetryAttempt) -> None:
        self.attempt = attempt

    @classmethod
    def __compose__(cls, opened: AttemptNode) -> "OpenedAttemptNode":
        if opened.attempt is None:
            raise NodeError("No ledger row")
        return cls(opened.attempt)


@G.node
class LedgerFailureNode:
    """Validates: ledger refused to open a row."""

    def __init__(self, spec: ReconcileSpec, error: StoreError) -> None:
        self.spec = spec
        self.error = error

    @classmethod
    def __compose__(cls, opened: AttemptNode) -> "LedgerFailureNode":
        if opened.ledger_error is None:
            raise NodeError("Ledger ok")
        return cls(opened.spec, opened.ledger_error)


# ═══════════════════════════════════════════════════════════════════════════════
# Lookup State Nodes
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class MissingOrderNode:
    """Validates: store answered, order does not exist."""

    def __init__(self, spec: ReconcileSpec, attempt: RetryAttempt) -> None:
        self.spec = spec
        self.attempt = attempt

    @classmethod
    def __compose__(
        cls, load: LoadOrderNode, opened: OpenedAttemptNode
    ) -> "MissingOrderNode":
        if load.store_error is not None:
            raise NodeError("Store error")
        if load.order is not None:
            raise NodeError("Order exists")
        return cls(load.spec, opened.attempt)


@G.node
class StoreFailureNode:
    """Validates: order store failed."""

    def __init__(
        self, spec: ReconcileSpec, attempt: RetryAttempt, error: StoreError
    ) -> None:
        self.spec = spec
        self.attempt = attempt
        self.error = error

    @classmethod
    def __compose__(
        cls, load: LoadOrderNode, opened: OpenedAttemptNode
    ) -> "StoreFailureNode":
        if load.store_error is None:
            raise NodeError("No store error")
        return cls(load.spec, opened.attempt, load.store_error)


@G.node
class UnpaidOrderNode:
    """Validates: order exists and still needs payment."""

    def __init__(
        self, spec: ReconcileSpec, order: Order, attempt: RetryAttempt
    ) -> None:
        self.spec = spec
        self.order = order
        self.attempt = attempt

    @classmethod
    def __compose__(
        cls, load: LoadOrderNode, opened: OpenedAttemptNode
    ) -> "UnpaidOrderNode":
        if load.order is None:
            raise NodeError("No order")
        if load.order.is_paid:
            raise NodeError("Already paid")
        return cls(load.spec, load.order, opened.attempt)


# ═══════════════════════════════════════════════════════════════════════════════
# Gateway Sessions
# ═══════════════════════════════════════════════════════════════════════════════


async def _fetch(
    gateway: PaymentGateway, session_id: str
) -> tuple[SessionState | None, GatewayError | None]:
    match await gateway.get_session(session_id):
        case Ok(state):
            return state, None
        case Error(err):
            log.warning("session_lookup_failed", session_id=session_id, error=err.message)
            return None, err


@G.node
class PriorSessionNode:
    """Session the caller came back with (None when the caller had none)."""

    def __init__(
        self, state: SessionState | None, error: GatewayError | None = None
    ) -> None:
        self.state = state
        self.error = error

    @classmethod
    async def __compose__(cls, unpaid: UnpaidOrderNode) -> "PriorSessionNode":
        prior = unpaid.spec.request.prior_session_id
        if prior is None:
            return cls(None)
        state, error = await _fetch(unpaid.spec.gateway, prior)
        return cls(state, error)


@G.node
class CurrentSessionNode:
    """
    Session stored on the order, when it is not the one the caller sent.

    Note: A different current session means someone else issued it after the
    caller's checkout started.
    """

    def __init__(
        self, state: SessionState | None, error: GatewayError | None = None
    ) -> None:
        self.state = state
        self.error = error

    @classmethod
    async def __compose__(cls, unpaid: UnpaidOrderNode) -> "CurrentSessionNode":
        current = unpaid.order.stripe_session_id
        if current is None or current == unpaid.spec.request.prior_session_id:
            return cls(None)
        state, error = await _fetch(unpaid.spec.gateway, current)
        return cls(state, error)


def _belongs_to(state: CompleteSession | OpenSession, order: Order) -> bool:
    """
    Session may act for this order.

    Retry sessions carry order_id in metadata. Sessions from the initial
    checkout carry none; those count only when the order row points at them.
    """
    tagged = state.metadata.get("order_id")
    if tagged:
        return tagged == order.id
    return state.id == order.stripe_session_id


class Verdict(Enum):
    SETTLE = auto()
    REUSE = auto()
    ISSUE = auto()
    UNSETTLED = auto()


@G.node
class SessionVerdictNode:
    """
    Decides what the gateway state means for this order.

    Note: Confirm-only requests (issue_new=False) never reach REUSE or ISSUE.
    Anything short of an owned completed session is UNSETTLED there.
    """

    def __init__(
        self,
        unpaid: UnpaidOrderNode,
        verdict: Verdict,
        session: CompleteSession | OpenSession | None = None,
        lookup_error: GatewayError | None = None,
    ) -> None:
        self.unpaid = unpaid
        self.verdict = verdict
        self.session = session
        self.lookup_error = lookup_error

    @classmethod
    def __compose__(
        cls,
        unpaid: UnpaidOrderNode,
        prior: PriorSessionNode,
        current: CurrentSessionNode,
    ) -> "SessionVerdictNode":
        order = unpaid.order

        for state in (prior.state, current.state):
            if isinstance(state, CompleteSession):
                if _belongs_to(state, order):
                    return cls(unpaid, Verdict.SETTLE, state)
                log.warning(
                    "foreign_session_ignored",
                    order_id=order.id,
                    session_id=state.id,
                    tagged_order=state.metadata.get("order_id"),
                )

        if not unpaid.spec.request.issue_new:
            return cls(
                unpaid, Verdict.UNSETTLED, lookup_error=prior.error or current.error
            )

        reusable = current.state
        if isinstance(reusable, OpenSession) and reusable.url and _belongs_to(reusable, order):
            return cls(unpaid, Verdict.REUSE, reusable)

        return cls(unpaid, Verdict.ISSUE)


@G.node
class SettleNode:
    """Validates: a completed session for this order exists."""

    def __init__(self, unpaid: UnpaidOrderNode, session: CompleteSession) -> None:
        self.unpaid = unpaid
        self.session = session

    @classmethod
    def __compose__(cls, verdict: SessionVerdictNode) -> "SettleNode":
        if verdict.verdict != Verdict.SETTLE or not isinstance(
            verdict.session, CompleteSession
        ):
            raise NodeError("Nothing to settle")
        return cls(verdict.unpaid, verdict.session)


@G.node
class ReuseNode:
    """Validates: the order's current open session can be handed out again."""

    def __init__(self, unpaid: UnpaidOrderNode, session: OpenSession) -> None:
        self.unpaid = unpaid
        self.session = session

    @classmethod
    def __compose__(cls, verdict: SessionVerdictNode) -> "ReuseNode":
        if verdict.verdict != Verdict.REUSE or not isinstance(
            verdict.session, OpenSession
        ):
            raise NodeError("Nothing to reuse")
        return cls(verdict.unpaid, verdict.session)


@G.node
class IssueNode:
    """Validates: no usable session, a fresh one is needed."""

    def __init__(self, unpaid: UnpaidOrderNode) -> None:
        self.unpaid = unpaid

    @classmethod
    def __compose__(cls, verdict: SessionVerdictNode) -> "IssueNode":
        if verdict.verdict != Verdict.ISSUE:
            raise NodeError("Usable session exists")
        return cls(verdict.unpaid)


@G.node
class UnsettledNode:
    """Validates: confirm-only request found no completed session."""

    def __init__(
        self, unpaid: UnpaidOrderNode, lookup_error: GatewayError | None
    ) -> None:
        self.unpaid = unpaid
        self.lookup_error = lookup_error

    @classmethod
    def __compose__(cls, verdict: SessionVerdictNode) -> "UnsettledNode":
        if verdict.verdict != Verdict.UNSETTLED:
            raise NodeError("Settled or issuing")
        return cls(verdict.unpaid, verdict.lookup_error)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome
# ═══════════════════════════════════════════════════════════════════════════════


type Outcome = Settlement | ReconcileError


async def _record(
    spec: ReconcileSpec, attempt: RetryAttempt, outcome: AttemptOutcome
) -> None:
    match await spec.ledger.record_outcome(
        attempt.order_id, attempt.attempt_number, outcome
    ):
        case Error(err):
            log.error(
                "ledger_outcome_not_recorded",
                order_id=attempt.order_id,
                attempt_number=attempt.attempt_number,
                error=err.message,
            )
        case Ok(_):
            pass


async def _fail(
    spec: ReconcileSpec,
    attempt: RetryAttempt,
    kind: FailureKind,
    message: str,
    cause: object | None = None,
) -> ReconcileError:
    await _record(spec, attempt, AttemptOutcome.failed(message))
    return ReconcileError(
        kind=kind,
        message=message,
        order_id=attempt.order_id,
        attempt_number=attempt.attempt_number,
        cause=cause,
    )


def _write_failure(err: StoreError | VersionConflict) -> tuple[FailureKind, str]:
    match err:
        case VersionConflict():
            return FailureKind.CONFLICT, err.message
        case StoreError(message=message):
            return FailureKind.STORE_UNAVAILABLE, message


@polymorphic[Outcome]
class ReconcileOutcome:
    """
    Polymorphic router — each @case depends on a validated state node.

    Note: checks live in the state nodes; cases only act.
    """

    @case
    def already_paid(cls, node: PaidOrderNode) -> Outcome:
        return AlreadyPaid(node.order)

    @case
    def ledger_unavailable(cls, node: LedgerFailureNode) -> Outcome:
        return ReconcileError(
            kind=FailureKind.STORE_UNAVAILABLE,
            message=node.error.message,
            order_id=node.spec.request.order_id,
            cause=node.error.cause,
        )

    @case
    async def order_missing(cls, node: MissingOrderNode) -> Outcome:
        return await _fail(
            node.spec,
            node.attempt,
            FailureKind.ORDER_NOT_FOUND,
            f"Order not found: {node.spec.request.order_id}",
        )

    @case
    async def store_unavailable(cls, node: StoreFailureNode) -> Outcome:
        return await _fail(
            node.spec,
            node.attempt,
            FailureKind.STORE_UNAVAILABLE,
            node.error.message,
            node.error.cause,
        )

    @case
    async def settle(cls, node: SettleNode) -> Outcome:
        spec, order, attempt = node.unpaid.spec, node.unpaid.order, node.unpaid.attempt
        session = node.session

        try:
            state = transition(order.id, order.state, PaymentEvent.SETTLED)
        except InvalidTransition as e:
            return await _fail(spec, attempt, FailureKind.INVALID_STATE, str(e), e)

        written = await spec.store.update_payment_fields(
            order.id,
            expected_version=order.version,
            payment_status=state.payment_status,
            status=state.status,
            session_id=session.id,
            intent_id=session.payment_intent_id,
        )
        match written:
            case Error(err):
                kind, message = _write_failure(err)
                return await _fail(spec, attempt, kind, message, err)
            case Ok(updated):
                await _record(spec, attempt, AttemptOutcome.paid())
                return Reconciled(
                    order=updated,
                    session_id=session.id,
                    payment_intent_id=session.payment_intent_id,
                    attempt_number=attempt.attempt_number,
                )

    @case
    async def reuse(cls, node: ReuseNode) -> Outcome:
        spec, order, attempt = node.unpaid.spec, node.unpaid.order, node.unpaid.attempt
        url = node.session.url or ""

        await _record(spec, attempt, AttemptOutcome.issued(node.session.id, url))
        return NewSessionIssued(
            order=order,
            session_id=node.session.id,
            retry_url=url,
            attempt_number=attempt.attempt_number,
            reused=True,
        )

    @case
    async def unsettled(cls, node: UnsettledNode) -> Outcome:
        spec, attempt = node.unpaid.spec, node.unpaid.attempt
        session_id = spec.request.prior_session_id or node.unpaid.order.stripe_session_id

        err = node.lookup_error
        if err is not None:
            kind = (
                FailureKind.TRANSIENT_GATEWAY
                if err.transient
                else FailureKind.SESSION_NOT_COMPLETE
            )
            return await _fail(spec, attempt, kind, err.message, err.cause)
        return await _fail(
            spec,
            attempt,
            FailureKind.SESSION_NOT_COMPLETE,
            f"No completed session for order {node.unpaid.order.id}: {session_id}",
        )

    @case
    async def issue(cls, node: IssueNode) -> Outcome:
        spec, order, attempt = node.unpaid.spec, node.unpaid.order, node.unpaid.attempt

        try:
            state = transition(order.id, order.state, PaymentEvent.SESSION_ISSUED)
        except InvalidTransition as e:
            return await _fail(spec, attempt, FailureKind.INVALID_STATE, str(e), e)

        request = CheckoutRequest.from_order(
            order,
            attempt_number=attempt.attempt_number,
            urls=spec.urls,
            original_session_id=spec.request.prior_session_id or order.stripe_session_id,
        )
        match await spec.gateway.create_session(request):
            case Error(err):
                kind = (
                    FailureKind.TRANSIENT_GATEWAY
                    if err.transient
                    else FailureKind.SESSION_CREATE_FAILED
                )
                return await _fail(spec, attempt, kind, err.message, err.cause)
            case Ok(created):
                pass

        written = await spec.store.update_payment_fields(
            order.id,
            expected_version=order.version,
            payment_status=state.payment_status,
            status=state.status,
            session_id=created.id,
        )
        match written:
            case Error(err):
                log.warning(
                    "issued_session_not_persisted",
                    order_id=order.id,
                    session_id=created.id,
                )
                kind, message = _write_failure(err)
                return await _fail(spec, attempt, kind, message, err)
            case Ok(updated):
                await _record(spec, attempt, AttemptOutcome.issued(created.id, created.url))
                return NewSessionIssued(
                    order=updated,
                    session_id=created.id,
                    retry_url=created.url,
                    attempt_number=attempt.attempt_number,
                )


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FinalOutcomeNode:
    """Converts Outcome to a typed Result."""

    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: ReconcileOutcome) -> "FinalOutcomeNode":
        return cls(outcome.value)

    def to_result(self) -> Result[Settlement, ReconcileError]:
        match self.outcome:
            case ReconcileError() as err:
                return Error(err)
            case settlement:
                return Ok(settlement)


__all__ = (
    "ReconcileSpec",
    "Outcome",
    "Verdict",
    "SpecNode",
    "LoadOrderNode",
    "PaidOrderNode",
    "AttemptNode",
    "OpenedAttemptNode",
    "LedgerFailureNode",
    "MissingOrderNode",
    "StoreFailureNode",
    "UnpaidOrderNode",
    "PriorSessionNode",
    "CurrentSessionNode",
    "SessionVerdictNode",
    "SettleNode",
    "ReuseNode",
    "IssueNode",
    "UnsettledNode",
    "ReconcileOutcome",
    "FinalOutcomeNode",
)
