"""Cooperative cancellation for streaming generations."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, TypeVar

from insight_core.domain.exceptions import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """Signals a consumer's intent to abandon a stream.

    The resilient caller races every provider await against the token, so
    a stalled provider is torn down as soon as ``cancel`` is called.  A
    cancelled attempt is never recorded as a success or a failure.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn()`` unless the token is cancelled first.

        On cancellation the pending work is cancelled and awaited before
        ``OperationCancelledError`` is raised.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(fn())
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
            abandoned = not work.done()
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await work

        if abandoned or work.cancelled():
            raise OperationCancelledError()
        return work.result()
