"""
Per-quote locks serializing writes to one quote aggregate within a process.
"""

import asyncio
from contextlib import asynccontextmanager, AsyncExitStack
from typing import AsyncIterator, Dict, Iterable
from uuid import UUID
import weakref


class QuoteLockRegistry:
    """
    Hands out one asyncio.Lock per quote id.

    Locks are held weakly and disappear once no operation references them.
    Locks are not reentrant: public service methods acquire, helpers never do.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, quote_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(quote_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[quote_id] = lock
        return lock

    def is_locked(self, quote_id: UUID) -> bool:
        lock = self._locks.get(quote_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, quote_id: UUID) -> AsyncIterator[None]:
        """Hold the lock of a single quote."""
        lock = self.lock_for(quote_id)
        async with lock:
            yield

    @asynccontextmanager
    async def hold_many(self, quote_ids: Iterable[UUID]) -> AsyncIterator[None]:
        """Hold the locks of several quotes, acquired in id order."""
        async with AsyncExitStack() as stack:
            for quote_id in sorted(set(quote_ids), key=str):
                await stack.enter_async_context(self.hold(quote_id))
            yield


# Process-wide registry shared by all services
quote_locks = QuoteLockRegistry()
