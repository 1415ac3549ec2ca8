"""
API — FastAPI surface for payment retries and Stripe webhooks.

    POST /orders/{order_id}/retry-payment   {session_id?}
    GET  /orders/{order_id}/retry-attempts
    POST /webhooks/stripe

Run:
    uvicorn paysettle.api:create_app --factory
"""

from paysettle.api._models import (
    RetryPaymentIn,
    RetryPaymentOut,
    RetryAttemptOut,
    RetryAttemptsOut,
    WebhookAck,
)
from paysettle.api._app import (
    Services,
    build_services,
    get_services,
    router,
    create_app,
)

__all__ = (
    # Models
    "RetryPaymentIn",
    "RetryPaymentOut",
    "RetryAttemptOut",
    "RetryAttemptsOut",
    "WebhookAck",
    # App
    "Services",
    "build_services",
    "get_services",
    "router",
    "create_app",
)
