"""Cooperative cancellation for refinement calls.

A ``CancellationToken`` is handed in by the caller and checked before every
suspension point.  ``guard()`` races an awaitable against the token so an
in-flight backend call is abandoned, cancelled and awaited as soon as the
token fires.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

from prompt_refiner.core.errors import RefinementCancelledError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal shared between a caller and a refine call."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation.  Idempotent."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``RefinementCancelledError`` if cancellation was requested."""
        if self._event.is_set():
            raise RefinementCancelledError()

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds, waking early if cancelled.

        Raises:
            RefinementCancelledError: If the token fires before the delay ends.
        """
        self.raise_if_cancelled()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        The losing side is cancelled and awaited before returning, so no
        work outlives the call.

        Raises:
            RefinementCancelledError: If the token fires before *awaitable*
                completes.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RefinementCancelledError()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (work, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(work, waiter, return_exceptions=True)

        if work in done:
            return work.result()
        raise RefinementCancelledError()


async def cancellable_sleep(delay: float, cancellation: CancellationToken | None = None) -> None:
    """``asyncio.sleep`` that honours an optional cancellation token."""
    if cancellation is None:
        await asyncio.sleep(delay)
        return
    await cancellation.sleep(delay)
