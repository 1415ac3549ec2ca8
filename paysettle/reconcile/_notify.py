"""
Post-paid trigger — order confirmation hook.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx
import structlog

log = structlog.get_logger(__name__)


class Notifier(Protocol):
    """Called once when an order moves to (processing, paid)."""

    async def order_paid(self, order_id: str) -> None:
        ...


class NullNotifier:
    async def order_paid(self, order_id: str) -> None:
        return None


class HttpNotifier:
    """
    POSTs {"order_id": ...} to the order confirmation endpoint.

    Example:
        notifier = HttpNotifier("https://mail.internal/order-confirmation", token=key)

    Note: Non-2xx answers raise httpx.HTTPStatusError. The engine logs the
    failure and the payment stays recorded.
    """

    def __init__(
        self,
        url: str,
        *,
        token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._timeout = timeout
        self._client = client

    async def order_paid(self, order_id: str) -> None:
        if self._client is not None:
            await self._post(self._client, order_id)
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            await self._post(client, order_id)

    async def _post(self, client: httpx.AsyncClient, order_id: str) -> None:
        response = await client.post(
            self.url, json={"order_id": order_id}, headers=self._headers
        )
        response.raise_for_status()
        log.info("order_confirmation_sent", order_id=order_id, status=response.status_code)


class _CallableNotifier:
    def __init__(self, fn: Callable[[str], Awaitable[None]]) -> None:
        self._fn = fn

    async def order_paid(self, order_id: str) -> None:
        await self._fn(order_id)


def notifier_from(fn: Callable[[str], Awaitable[None]]) -> Notifier:
    """
    Wrap an async callable as a Notifier.

    Example:
        async def send_confirmation(order_id: str) -> None:
            await mailer.send_order_confirmation(order_id)

        engine = ReconciliationEngine(..., notifier=notifier_from(send_confirmation))
    """
    return _CallableNotifier(fn)


__all__ = ("Notifier", "NullNotifier", "HttpNotifier", "notifier_from")
