# unit tests for the background cache sweeper

import asyncio

from goals.cache import TTLCache
from worker.cache_sweeper import CacheSweeper

def test_sweep_once_removes_expired(clock):
    cache = TTLCache(clock=clock)
    cache.set("old", 1, 10)
    cache.set("fresh", 2, 100)
    clock.advance(20)

    sweeper = CacheSweeper(cache, interval_seconds=1)

    assert sweeper.sweep_once() == 1
    assert cache.size() == 1
    assert sweeper.sweep_once() == 0

async def test_start_and_stop(clock):
    cache = TTLCache(clock=clock)
    cache.set("old", 1, 10)
    clock.advance(20)

    sweeper = CacheSweeper(cache, interval_seconds=0)
    task = asyncio.ensure_future(sweeper.start())
    await asyncio.sleep(0.01)

    assert sweeper.running is True
    assert cache.size() == 0

    sweeper.stop()
    await asyncio.wait_for(task, timeout=1)
    assert sweeper.running is False
