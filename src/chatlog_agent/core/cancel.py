"""Cooperative cancellation token."""

from __future__ import annotations

import asyncio


class CancelToken:
    """A one-shot cancellation flag checked at the agent's suspension points.

    Cancellation is cooperative: setting the token never interrupts running
    code, it is observed the next time someone calls :attr:`cancelled`.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
