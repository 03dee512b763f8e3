"""
Cooperative cancellation for research runs.

A token is created per run and passed to every stage. Stages check it
after each suspension point; nothing is interrupted forcibly.
"""
import asyncio

from deep_research.core.exceptions import RunCancelledError


class CancellationToken:
    """One-way flag: once cancelled, always cancelled."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "stopped by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(f"Research run was stopped ({self.reason})")

    async def wait(self) -> None:
        await self._event.wait()
