"""
Completion barrier for long-running background tasks.
"""

import asyncio
import contextlib
from typing import AsyncIterator


class CompletionBarrier:
    """Counts in-flight background tasks so a parent can wait for all of them.

    Tasks call ``add`` when they start and ``done`` when they finish; the
    parent awaits ``wait`` before exiting. The barrier belongs to the event
    loop that uses it.
    """

    def __init__(self):
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    def add(self, delta: int = 1) -> None:
        """Adjust the in-flight counter by ``delta``."""
        count = self._count + delta
        if count < 0:
            raise ValueError("CompletionBarrier counter cannot go negative")
        self._count = count
        if count == 0:
            self._idle.set()
        else:
            self._idle.clear()

    def done(self) -> None:
        """Mark one task as finished."""
        self.add(-1)

    async def wait(self) -> None:
        """Wait until every registered task has finished."""
        await self._idle.wait()

    @contextlib.asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Register for the duration of the ``async with`` block."""
        self.add()
        try:
            yield
        finally:
            self.done()
