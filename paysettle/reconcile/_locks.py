"""
Per-order serialization inside one process.

Across processes the order row's version check is the guard.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class OrderLocks:
    """
    Registry of asyncio.Lock keyed by order id.

    Note: A lock is dropped once nobody holds or waits for it, so the
    registry does not grow with the number of orders ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._users[order_id] = self._users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[order_id] -= 1
            if self._users[order_id] == 0:
                del self._users[order_id]
                del self._locks[order_id]

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ("OrderLocks",)
