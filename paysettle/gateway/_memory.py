"""
In-memory gateway for tests and local runs.

    gateway = MemoryGateway()
    gateway.fail_next_create(2, transient=True)    # two 503s, then success
    ...
    gateway.complete(session_id, intent_id="pi_1")  # buyer paid
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Mapping
from dataclasses import dataclass

from kungfu import Result, Ok, Error

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


@dataclass(slots=True)
class _StoredSession:
    id: str
    url: str
    status: str
    metadata: Mapping[str, str]
    request: CheckoutRequest | None = None
    payment_intent_id: str | None = None


@dataclass(slots=True)
class _Failures:
    remaining: int = 0
    transient: bool = True
    message: str = "gateway unavailable"

    def take(self) -> GatewayError | None:
        if self.remaining <= 0:
            return None
        self.remaining -= 1
        return GatewayError(self.message, transient=self.transient)


class MemoryGateway:
    """
    Hosted checkout kept in a dict.

    Note: create_session honours idempotency keys the way Stripe does:
    the same key returns the same session instead of minting a new one.
    """

    def __init__(self, *, base_url: str = "https://checkout.test") -> None:
        self._base_url = base_url.rstrip("/")
        self._sessions: dict[str, _StoredSession] = {}
        self._by_key: dict[str, str] = {}
        self._ids = itertools.count(1)
        self._create_failures = _Failures()
        self._get_failures = _Failures()
        self._lock = asyncio.Lock()
        self.create_calls: int = 0
        self.get_calls: int = 0
        self.requests: list[CheckoutRequest] = []

    # ═══════════════════════════════════════════════════════════════════════════
    # PaymentGateway
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_session(
        self, request: CheckoutRequest
    ) -> Result[CheckoutSession, GatewayError]:
        async with self._lock:
            self.create_calls += 1
            self.requests.append(request)

            if (err := self._create_failures.take()) is not None:
                return Error(err)

            if (existing := self._by_key.get(request.idempotency_key)) is not None:
                stored = self._sessions[existing]
                return Ok(CheckoutSession(stored.id, stored.url))

            session_id = f"cs_test_{next(self._ids)}"
            stored = _StoredSession(
                id=session_id,
                url=f"{self._base_url}/{session_id}",
                status="open",
                metadata=dict(request.metadata),
                request=request,
            )
            self._sessions[session_id] = stored
            self._by_key[request.idempotency_key] = session_id
            return Ok(CheckoutSession(stored.id, stored.url))

    async def get_session(self, session_id: str) -> Result[SessionState, GatewayError]:
        async with self._lock:
            self.get_calls += 1

            if (err := self._get_failures.take()) is not None:
                return Error(err)

            stored = self._sessions.get(session_id)
            if stored is None:
                return Ok(MissingSession(session_id))

            match stored.status:
                case "complete":
                    return Ok(CompleteSession(
                        id=stored.id,
                        payment_intent_id=stored.payment_intent_id,
                        metadata=stored.metadata,
                    ))
                case "expired":
                    return Ok(ExpiredSession(stored.id))
                case _:
                    return Ok(OpenSession(
                        id=stored.id, url=stored.url, metadata=stored.metadata
                    ))

    # ═══════════════════════════════════════════════════════════════════════════
    # Test Controls
    # ═══════════════════════════════════════════════════════════════════════════

    def open(
        self,
        session_id: str,
        *,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        """Register an open session created outside this gateway (initial checkout)."""
        self._sessions[session_id] = _StoredSession(
            id=session_id,
            url=f"{self._base_url}/{session_id}",
            status="open",
            metadata=dict(metadata or {}),
        )
        return session_id

    def complete(self, session_id: str, *, intent_id: str | None = None) -> None:
        """Buyer finished checkout."""
        stored = self._sessions[session_id]
        stored.status = "complete"
        stored.payment_intent_id = intent_id or f"pi_{session_id}"

    def expire(self, session_id: str) -> None:
        self._sessions[session_id].status = "expired"

    def forget(self, session_id: str) -> None:
        """Drop a session so retrieval reports MissingSession."""
        self._sessions.pop(session_id, None)

    def fail_next_create(self, times: int = 1, *, transient: bool = True) -> None:
        self._create_failures = _Failures(times, transient)

    def fail_next_get(self, times: int = 1, *, transient: bool = True) -> None:
        self._get_failures = _Failures(times, transient)

    @property
    def sessions_created(self) -> int:
        return len(self._by_key)


__all__ = ("MemoryGateway",)
