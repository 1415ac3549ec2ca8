"""
Gateway — hosted checkout sessions.

    from paysettle import gateway as Gateway

    gw = Gateway.StripeGateway(api_key=settings.stripe_secret_key)

    match await gw.get_session(session_id):
        case Ok(Gateway.CompleteSession(payment_intent_id=pi)): ...   # paid
        case Ok(Gateway.OpenSession(url=url)): ...                    # still payable
        case Ok(Gateway.ExpiredSession() | Gateway.MissingSession()): ...
        case Error(err) if err.transient: ...                         # retry later
"""

from paysettle.gateway._types import (
    OpenSession,
    CompleteSession,
    ExpiredSession,
    MissingSession,
    SessionState,
    GatewayError,
    CheckoutRequest,
    CheckoutSession,
    ReturnUrls,
    PaymentGateway,
)
from paysettle.gateway._memory import MemoryGateway
from paysettle.gateway._stripe import StripeGateway

__all__ = (
    # Types
    "OpenSession",
    "CompleteSession",
    "ExpiredSession",
    "MissingSession",
    "SessionState",
    "GatewayError",
    "CheckoutRequest",
    "CheckoutSession",
    "ReturnUrls",
    "PaymentGateway",
    # Implementations
    "MemoryGateway",
    "StripeGateway",
)
