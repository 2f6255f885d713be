# tests/test_single_flight.py

import asyncio

import pytest

from liverelay.single_flight import KeyedLock


async def test_concurrent_holders_run_one_at_a_time(locks):
    active = 0
    peak = 0
    done = []

    async def producer(i):
        nonlocal active, peak
        async with locks.hold("k"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            done.append(i)

    await asyncio.gather(*(producer(i) for i in range(8)))
    assert peak == 1
    assert sorted(done) == list(range(8))
    assert len(locks) == 0


async def test_losers_reread_shared_state_and_skip_the_fetch(locks):
    cache = {}
    fetches = 0

    async def get_or_fetch():
        if "k" in cache:
            return cache["k"]
        async with locks.hold("k"):
            if "k" in cache:
                return cache["k"]
            nonlocal fetches
            fetches += 1
            await asyncio.sleep(0.01)
            cache["k"] = "value"
            return cache["k"]

    results = await asyncio.gather(*(get_or_fetch() for _ in range(10)))
    assert results == ["value"] * 10
    assert fetches == 1


async def test_waiters_finish_after_first_release(locks):
    order = []
    await locks.acquire("k")

    async def waiter(i):
        async with locks.hold("k"):
            order.append(i)

    tasks = [asyncio.create_task(waiter(i)) for i in range(3)]
    await asyncio.sleep(0.01)
    assert order == []
    order.append("first-released")
    locks.release("k")
    await asyncio.gather(*tasks)
    assert order == ["first-released", 0, 1, 2]


async def test_release_on_error(locks):
    async def boom():
        raise ValueError("x")

    with pytest.raises(ValueError):
        await locks.run("k", boom)
    assert not locks.locked("k")
    assert len(locks) == 0
    await asyncio.wait_for(locks.acquire("k"), timeout=0.1)
    locks.release("k")


async def test_free_acquire_registers_no_waiter(locks):
    await locks.acquire("k")
    entry = locks._entries["k"]
    assert entry.users == 1
    locks.release("k")
    assert "k" not in locks._entries


async def test_keys_are_independent(locks):
    await locks.acquire("a")
    await asyncio.wait_for(locks.acquire("b"), timeout=0.1)
    assert locks.locked("a") and locks.locked("b")
    locks.release("a")
    locks.release("b")


async def test_cancelled_waiter_is_forgotten(locks):
    await locks.acquire("k")
    task = asyncio.create_task(locks.acquire("k"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert locks._entries["k"].users == 1
    locks.release("k")
    assert len(locks) == 0


def test_release_of_unheld_key_is_an_error():
    with pytest.raises(RuntimeError):
        KeyedLock().release("nope")


async def test_run_returns_value(locks):
    async def produce():
        return 42

    assert await locks.run("k", produce) == 42
