"""Cancellation token shared by every suspension point of one turn."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from docchat.engine.errors import TurnCancelled

T = TypeVar("T")


class CancellationToken:
    """A one-shot flag that unblocks every operation awaiting through it.

    Awaitables passed to ``run`` are raced against the token, so a blocked
    network read returns control as soon as ``cancel`` is called instead of
    waiting for the stream to end on its own.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TurnCancelled("turn cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            TurnCancelled: If the token fired before the awaitable finished.
                The awaitable's task is cancelled and awaited.
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            await _cancel_and_wait(task)
            raise TurnCancelled("turn cancelled")

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            await _cancel_and_wait(task)
            raise
        finally:
            waiter.cancel()

        if task.done() and not self.cancelled:
            return task.result()

        await _cancel_and_wait(task)
        raise TurnCancelled("turn cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, raising TurnCancelled if the token fires."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise TurnCancelled("turn cancelled")


async def _cancel_and_wait(task: asyncio.Future) -> None:
    if not task.done():
        task.cancel()
    await asyncio.gather(task, return_exceptions=True)
