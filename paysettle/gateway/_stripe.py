"""
Stripe Checkout gateway.

Note: stripe-python is blocking — calls run in a worker thread so the
event loop keeps serving other orders while Stripe answers.
"""

from __future__ import annotations

import asyncio
from typing import Any

import stripe
import structlog
from combinators import lift as L

from paysettle._types import Lazy
from paysettle.orders import OrderLine
from paysettle.gateway._types import (
    CheckoutRequest,
    CheckoutSession,
    CompleteSession,
    ExpiredSession,
    GatewayError,
    MissingSession,
    OpenSession,
    SessionState,
)

log = structlog.get_logger(__name__)


def _is_transient(e: Exception) -> bool:
    if isinstance(e, (stripe.APIConnectionError, stripe.RateLimitError)):
        return True
    if isinstance(e, stripe.StripeError):
        return (e.http_status or 0) >= 500
    # Timeouts and socket errors raised outside the SDK's own wrappers
    return isinstance(e, (TimeoutError, ConnectionError))


def _to_gateway_error(e: Exception) -> GatewayError:
    return GatewayError(message=str(e), transient=_is_transient(e), cause=e)


def _metadata(obj: Any) -> dict[str, str]:
    raw = getattr(obj, "metadata", None) or {}
    return {str(k): str(v) for k, v in raw.items()}


def _intent_id(session: Any) -> str | None:
    intent = getattr(session, "payment_intent", None)
    if intent is None or isinstance(intent, str):
        return intent
    return getattr(intent, "id", None)


class StripeGateway:
    """
    PaymentGateway over stripe.checkout.Session.

    Example:
        gateway = StripeGateway(api_key=settings.stripe_secret_key)
        match await gateway.get_session("cs_test_123"):
            case Ok(CompleteSession(payment_intent_id=pi)): ...

    Note: Retry sessions charge the stored order total, so automatic tax
    stays off and stored tax goes in as its own line item.
    """

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def create_session(
        self, request: CheckoutRequest
    ) -> Lazy[CheckoutSession, GatewayError]:
        def _create() -> CheckoutSession:
            line_items = [_line_item(line, request.currency) for line in request.lines]
            if request.tax_cents:
                line_items.append(_fixed_item("Tax", request.tax_cents, request.currency))

            extra: dict[str, Any] = {}
            if request.shipping_cents:
                extra["shipping_options"] = [
                    _shipping_option(request.shipping_cents, request.currency)
                ]
            if request.discount_cents:
                coupon = stripe.Coupon.create(
                    api_key=self._api_key,
                    idempotency_key=f"{request.idempotency_key}:coupon",
                    amount_off=request.discount_cents,
                    currency=request.currency,
                    duration="once",
                    max_redemptions=1,
                    name=f"Order {request.order_number} discount",
                )
                extra["discounts"] = [{"coupon": coupon.id}]

            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                idempotency_key=request.idempotency_key,
                payment_method_types=["card"],
                mode="payment",
                line_items=line_items,
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                customer_email=request.email,
                automatic_tax={"enabled": False},
                metadata=dict(request.metadata),
                **extra,
            )
            if not session.url:
                raise stripe.InvalidRequestError(
                    f"Session {session.id} has no redirect url", param="url"
                )
            return CheckoutSession(id=session.id, url=session.url)

        async def _run() -> CheckoutSession:
            log.info(
                "stripe_session_create",
                order_id=request.order_id,
                amount_cents=request.amount_cents,
                idempotency_key=request.idempotency_key,
            )
            return await asyncio.to_thread(_create)

        return L.catching_async(_run, on_error=_to_gateway_error)

    def get_session(self, session_id: str) -> Lazy[SessionState, GatewayError]:
        def _retrieve() -> SessionState:
            try:
                session = stripe.checkout.Session.retrieve(
                    session_id, api_key=self._api_key
                )
            except stripe.InvalidRequestError as e:
                if e.code == "resource_missing":
                    return MissingSession(session_id)
                raise

            match session.status:
                case "complete":
                    return CompleteSession(
                        id=session.id,
                        payment_intent_id=_intent_id(session),
                        metadata=_metadata(session),
                    )
                case "expired":
                    return ExpiredSession(session.id)
                case _:
                    return OpenSession(
                        id=session.id,
                        url=session.url,
                        metadata=_metadata(session),
                    )

        async def _run() -> SessionState:
            return await asyncio.to_thread(_retrieve)

        return L.catching_async(_run, on_error=_to_gateway_error)


def _line_item(line: OrderLine, currency: str) -> dict[str, Any]:
    return {
        "price_data": {
            "currency": currency,
            "product_data": {
                "name": line.product_name,
                "metadata": {
                    "product_id": line.product_id,
                    "variant_id": line.variant_id or "",
                },
            },
            "unit_amount": line.unit_price_cents,
        },
        "quantity": line.quantity,
    }


def _fixed_item(name: str, amount_cents: int, currency: str) -> dict[str, Any]:
    return {
        "price_data": {
            "currency": currency,
            "product_data": {"name": name},
            "unit_amount": amount_cents,
        },
        "quantity": 1,
    }


def _shipping_option(amount_cents: int, currency: str) -> dict[str, Any]:
    return {
        "shipping_rate_data": {
            "type": "fixed_amount",
            "fixed_amount": {"amount": amount_cents, "currency": currency},
            "display_name": "Shipping",
        }
    }


__all__ = ("StripeGateway",)
