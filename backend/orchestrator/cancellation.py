"""
Cooperative cancellation tokens.

Responsibilities:
- Carry a cancellation request from an outer scope to inner operations
- Link child tokens to parents (cancelling a parent cancels its children)
- Race suspending work against cancellation and an optional timeout

Non-responsibilities:
- NO retry logic
- NO state machine decisions
- NO forced thread interruption

Every suspending call in the streaming client and the refinement
supervisor goes through CancellationToken.run() or .sleep(), so a cancel
request is observed at the next suspension point.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar


T = TypeVar("T")


class OperationCancelled(Exception):
    """
    Raised at a suspension point after cancellation was requested.

    Distinct from asyncio.CancelledError (task cancellation) and never
    reported as a failure.
    """


class CancellationToken:
    """
    Observable, idempotent cancellation signal.

    Lifecycle:
    1. Owner creates a token (optionally linked to a parent)
    2. Token is passed into every suspending call
    3. Owner (or parent) calls cancel()
    4. Pending run()/sleep() calls raise OperationCancelled
    5. Owner calls detach() when the scope ends
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = asyncio.Event()
        self._children: list[CancellationToken] = []
        self._parent = parent

        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Idempotent; propagates to children."""
        if self._event.is_set():
            return
        self._event.set()
        for child in list(self._children):
            child.cancel()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    def detach(self) -> None:
        """Unlink from the parent so finished scopes are not retained."""
        if self._parent is not None:
            try:
                self._parent._children.remove(self)
            except ValueError:
                pass
            self._parent = None

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        await self._event.wait()

    async def sleep(self, delay_s: float) -> None:
        """
        Sleep for delay_s unless cancelled first.

        Raises:
            OperationCancelled if cancellation is requested before or
            during the sleep.
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay_s)
        except asyncio.TimeoutError:
            return
        raise OperationCancelled()

    async def run(self, awaitable: Awaitable[T], *, timeout_s: float | None = None) -> T:
        """
        Await `awaitable` unless cancellation or the timeout comes first.

        Raises:
            OperationCancelled: cancellation won the race (work is cancelled)
            asyncio.TimeoutError: timeout_s elapsed (work is cancelled)
            Whatever the work itself raised.
        """
        if self._event.is_set():
            _close_unstarted(awaitable)
            raise OperationCancelled()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                timeout=timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        # Let the work unwind; its outcome is superseded by the cancel/timeout
        await asyncio.gather(work, return_exceptions=True)

        if self._event.is_set():
            raise OperationCancelled()
        raise asyncio.TimeoutError()


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _close_unstarted(awaitable: Awaitable[object]) -> None:
    # Avoid "coroutine was never awaited" warnings
    close = getattr(awaitable, "close", None)
    if asyncio.iscoroutine(awaitable) and close is not None:
        close()
