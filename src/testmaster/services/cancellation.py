"""Cooperative cancellation for testing sessions."""

import asyncio
from typing import Optional


class SessionCancelledError(Exception):
    """Raised at a checkpoint once the session has been cancelled."""


class CancellationToken:
    """
    Cancellation flag checked at every phase boundary, page and test.

    The registry also cancels the session task, so operations blocked in
    I/O are interrupted rather than waiting for the next checkpoint.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SessionCancelledError(self.reason or "Session cancelled")

    async def wait(self) -> None:
        await self._event.wait()
