"""
Cancellation token for the retry loop.
"""

from __future__ import annotations

import asyncio


class CancelToken:
    """
    Caller-initiated abort.

    Example:
        token = CancelToken()
        task = asyncio.create_task(controller.run(order_id, cancel=token))
        ...
        token.cancel()          # buyer left the page

    Note: Cancelling never interrupts a call already in flight; it stops
    the next backoff and the next attempt.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to seconds. False if cancelled before or during the wait."""
        if self.cancelled:
            return False
        if seconds <= 0:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return True
        return False


__all__ = ("CancelToken",)
