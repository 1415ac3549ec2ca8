"""
HTTP API — retry endpoint, ledger view, Stripe webhook.

    app = create_app(services)             # tests, embedding
    app = create_app()                     # uvicorn: services built from env on startup
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Annotated, Any

import stripe
import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from kungfu import Ok, Error

from paysettle.api._models import (
    RetryAttemptsOut,
    RetryPaymentIn,
    RetryPaymentOut,
    WebhookAck,
)
from paysettle.db import create_database
from paysettle.gateway import PaymentGateway, ReturnUrls, StripeGateway
from paysettle.ledger import RetryLedger, SQLAlchemyLedger
from paysettle.log import configure_logging
from paysettle.orders import OrderStore, SQLAlchemyOrderStore
from paysettle.reconcile import (
    FailureKind,
    HttpNotifier,
    Notifier,
    NullNotifier,
    ReconciliationEngine,
)
from paysettle.retry import GaveUp, RetryController
from paysettle.settings import Settings

log = structlog.get_logger(__name__)

WEBHOOK_REASON = "checkout.session.completed webhook"


# ═══════════════════════════════════════════════════════════════════════════════
# Services
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class Services:
    """Collaborators the API runs on."""

    store: OrderStore
    ledger: RetryLedger
    gateway: PaymentGateway
    settings: Settings = field(default_factory=Settings)
    notifier: Notifier = field(default_factory=NullNotifier)
    db_engine: AsyncEngine | None = None
    engine: ReconciliationEngine = field(init=False)
    controller: RetryController = field(init=False)

    def __post_init__(self) -> None:
        self.engine = ReconciliationEngine(
            self.store,
            self.gateway,
            self.ledger,
            ReturnUrls(self.settings.public_base_url),
            notifier=self.notifier,
        )
        self.controller = RetryController(self.engine, self.settings.retry_policy())

    async def close(self) -> None:
        await self.engine.drain()
        if self.db_engine is not None:
            await self.db_engine.dispose()


async def build_services(settings: Settings, *, notifier: Notifier | None = None) -> Services:
    """Production wiring: SQLAlchemy stores + Stripe."""
    session_factory, db_engine = await create_database(settings.database_url)
    return Services(
        store=SQLAlchemyOrderStore(session_factory),
        ledger=SQLAlchemyLedger(session_factory),
        gateway=StripeGateway(settings.stripe_secret_key),
        settings=settings,
        notifier=notifier or _notifier_for(settings),
        db_engine=db_engine,
    )


def _notifier_for(settings: Settings) -> Notifier:
    if not settings.order_confirmation_url:
        return NullNotifier()
    return HttpNotifier(
        settings.order_confirmation_url, token=settings.order_confirmation_token
    )


def get_services(request: Request) -> Services:
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return services


ServicesDep = Annotated[Services, Depends(get_services)]


# ═══════════════════════════════════════════════════════════════════════════════
# Routes
# ═══════════════════════════════════════════════════════════════════════════════


router = APIRouter()


@router.post("/orders/{order_id}/retry-payment", response_model=RetryPaymentOut)
async def retry_payment(
    order_id: str,
    services: ServicesDep,
    body: RetryPaymentIn | None = None,
) -> Any:
    request = (body or RetryPaymentIn()).to_domain(order_id)
    result = await services.controller.run(
        request.order_id,
        request.prior_session_id,
        reason=request.reason,
    )

    match result:
        case Error(GaveUp(error=err)) if err.kind == FailureKind.ORDER_NOT_FOUND:
            raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
        case Error(_):
            out = RetryPaymentOut.from_domain(result)
            return JSONResponse(status_code=400, content=out.model_dump())
        case Ok(_):
            return RetryPaymentOut.from_domain(result)


@router.get("/orders/{order_id}/retry-attempts", response_model=RetryAttemptsOut)
async def retry_attempts(order_id: str, services: ServicesDep) -> RetryAttemptsOut:
    match await services.ledger.attempts(order_id):
        case Ok(rows):
            return RetryAttemptsOut.from_domain(order_id, rows)
        case Error(err):
            log.error("ledger_read_failed", order_id=order_id, error=err.message)
            raise HTTPException(status_code=503, detail="Retry ledger unavailable")


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    services: ServicesDep,
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookAck:
    payload = await request.body()

    try:
        event = stripe.Webhook.construct_event(
            payload,
            stripe_signature or "",
            services.settings.stripe_webhook_secret,
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    if event["type"] != "checkout.session.completed":
        return WebhookAck()

    session = event["data"]["object"]
    session_id: str = session["id"]
    order_id = await _order_for_session(services, session)
    if order_id is None:
        log.warning("webhook_order_unknown", session_id=session_id)
        return WebhookAck()

    match await services.engine.reconcile(
        order_id, session_id, reason=WEBHOOK_REASON, issue_new=False
    ):
        case Ok(settlement):
            return WebhookAck(order_id=order_id, outcome=type(settlement).__name__)
        case Error(err) if err.retryable:
            # Non-2xx makes Stripe redeliver the event later
            raise HTTPException(status_code=503, detail=err.message)
        case Error(err):
            return WebhookAck(order_id=order_id, outcome=err.kind.name)


async def _order_for_session(services: Services, session: Any) -> str | None:
    metadata = session.get("metadata") or {}
    if metadata.get("order_id"):
        return str(metadata["order_id"])

    match await services.store.find_by_session(session["id"]):
        case Ok(order) if order is not None:
            return order.id
        case Ok(_):
            return None
        case Error(err):
            log.error("webhook_lookup_failed", session_id=session["id"], error=err.message)
            raise HTTPException(status_code=503, detail="Order store unavailable")


# ═══════════════════════════════════════════════════════════════════════════════
# App
# ═══════════════════════════════════════════════════════════════════════════════


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the FastAPI app.

    Without services, they are built from the environment on startup
    and closed on shutdown. Provided services are only drained of pending
    notifications; the caller closes them.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        provided: Services | None = getattr(app.state, "services", None)
        if provided is not None:
            try:
                yield
            finally:
                await provided.engine.drain()
            return

        settings = Settings.from_env()
        configure_logging(settings.log_level, json=settings.log_json)
        built = await build_services(settings)
        app.state.services = built
        log.info("paysettle_started", database_url=settings.database_url)
        try:
            yield
        finally:
            await built.close()

    app = FastAPI(title="paysettle", lifespan=lifespan)
    app.state.services = services
    app.include_router(router)
    return app


__all__ = (
    "Services",
    "build_services",
    "get_services",
    "router",
    "create_app",
)
