from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar


T = TypeVar("T")


class Sequencer:
    """Run queued coroutine functions one at a time, in submission order.

    A task starts once the previously queued task has settled, whatever its
    outcome. Cancelling the awaitable returned by :meth:`queue` only stops the
    caller from waiting; the queued task itself still runs in its turn, so the
    timeline never overlaps. Must be used from inside a running event loop.
    """

    def __init__(self, *, timeout: Optional[float] = None) -> None:
        self._timeout = timeout
        self._tail: Optional[asyncio.Task] = None

    def queue(self, task: Callable[[], Awaitable[T]]) -> asyncio.Future:
        previous = self._tail

        async def _run() -> T:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            if self._timeout is None:
                return await task()
            return await asyncio.wait_for(task(), timeout=self._timeout)

        current = asyncio.get_running_loop().create_task(_run())
        self._tail = current
        # callers get a shield so their cancellation never settles the tail early
        return asyncio.shield(current)
