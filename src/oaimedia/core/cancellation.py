"""
Cooperative cancellation for long-running API operations.

A CancellationToken is handed down through every awaitable that may block
(pacing delay, transport call, poll interval). Once cancelled it stays
cancelled.
"""

import asyncio
import contextlib


class CancellationToken:
    """Cooperative, one-shot cancellation signal backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation. Idempotent."""
        self._event.set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for up to ``seconds``, returning early if the token is cancelled.

        Callers still check ``cancelled`` afterwards; this only shortens the
        wait.
        """
        if seconds <= 0 or self.cancelled:
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=seconds)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
