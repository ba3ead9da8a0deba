"""Cooperative cancellation signal threaded through requests and file reads."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """A one-shot cancellation flag.

    Work loops check the token at their suspension points (before a network
    call, before pulling the next stream chunk, before reading the next file).
    Once cancelled it stays cancelled; create a fresh token per request.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise ``asyncio.CancelledError`` when the token has fired."""
        if self._event.is_set():
            raise asyncio.CancelledError(self.reason or "operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled


def check_cancelled(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()
