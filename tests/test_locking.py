"""
Per-quote lock registry tests.
"""

import asyncio
from uuid import uuid4

from quotedesk.utils.locking import QuoteLockRegistry


async def test_same_quote_is_serialized():
    locks = QuoteLockRegistry()
    quote_id = uuid4()
    events = []

    async def worker(name):
        async with locks.hold(quote_id):
            events.append(f"{name}-start")
            await asyncio.sleep(0.01)
            events.append(f"{name}-end")

    await asyncio.gather(worker("a"), worker("b"))

    assert events == ["a-start", "a-end", "b-start", "b-end"]


async def test_different_quotes_do_not_block():
    locks = QuoteLockRegistry()
    first, second = uuid4(), uuid4()

    async with locks.hold(first):
        assert locks.is_locked(first)
        assert not locks.is_locked(second)
        async with locks.hold(second):
            assert locks.is_locked(second)

    assert not locks.is_locked(first)


async def test_hold_many_in_opposite_orders_does_not_deadlock():
    locks = QuoteLockRegistry()
    ids = [uuid4() for _ in range(3)]

    async def sweep(order):
        async with locks.hold_many(order):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(asyncio.gather(sweep(ids), sweep(list(reversed(ids)))), timeout=2)

    assert not any(locks.is_locked(quote_id) for quote_id in ids)


async def test_hold_many_ignores_duplicates():
    locks = QuoteLockRegistry()
    quote_id = uuid4()

    async with locks.hold_many([quote_id, quote_id]):
        assert locks.is_locked(quote_id)
