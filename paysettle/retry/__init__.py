"""
Retry — bounded, cancellable retry loop over reconciliation.

    from paysettle import retry as Retry

    controller = Retry.RetryController(
        engine,
        Retry.RetryPolicy().with_max_retries(3).with_base_delay(seconds=1),
    )
    result = await controller.run(order_id, session_id, cancel=Retry.CancelToken())
"""

from paysettle.retry._policy import RetryPolicy
from paysettle.retry._cancel import CancelToken
from paysettle.retry._controller import (
    SUPPORT_MESSAGE,
    Settled,
    Redirect,
    GaveUp,
    Cancelled,
    RetryController,
)

__all__ = (
    "RetryPolicy",
    "CancelToken",
    "SUPPORT_MESSAGE",
    "Settled",
    "Redirect",
    "GaveUp",
    "Cancelled",
    "RetryController",
)
