import asyncio

import pytest

from stockledger.core.exceptions import ConcurrencyConflict
from stockledger.core.locks import KeyedLockRegistry


class TestKeyedLockRegistry:
    def test_canonical_order_sorts_and_dedups(self):
        assert KeyedLockRegistry.canonical_order([(1, 9), (1, 2), (1, 9), (0, 5)]) == [(0, 5), (1, 2), (1, 9)]

    async def test_registry_is_empty_after_release(self):
        locks = KeyedLockRegistry()
        async with locks.acquire([(1, 2), (1, 1)], timeout=1) as ordered:
            assert ordered == [(1, 1), (1, 2)]
            assert locks.is_locked((1, 1)) and locks.is_locked((1, 2))
        assert len(locks) == 0

    async def test_released_when_body_raises(self):
        locks = KeyedLockRegistry()
        with pytest.raises(RuntimeError):
            async with locks.acquire([(1, 1)], timeout=1):
                raise RuntimeError("boom")
        assert len(locks) == 0

    async def test_same_key_is_serialized(self):
        locks = KeyedLockRegistry()
        order = []

        async def worker(name):
            async with locks.acquire([(1, 1)], timeout=2):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    async def test_distinct_keys_do_not_wait(self):
        locks = KeyedLockRegistry()
        async with locks.acquire([(1, 1)], timeout=1):
            async with locks.acquire([(1, 2)], timeout=0.05):
                assert locks.is_locked((1, 2))

    async def test_timeout_raises_and_keeps_nothing(self):
        locks = KeyedLockRegistry()
        async with locks.acquire([(1, 2)], timeout=1):
            with pytest.raises(ConcurrencyConflict) as exc:
                async with locks.acquire([(1, 1), (1, 2)], timeout=0.05):
                    pass
            assert exc.value.retryable
            assert exc.value.keys == [(1, 1), (1, 2)]
            # the partially taken (1, 1) was given back
            assert not locks.is_locked((1, 1))
        assert len(locks) == 0

    async def test_opposite_orders_do_not_deadlock(self):
        locks = KeyedLockRegistry()

        async def worker(keys):
            for _ in range(20):
                async with locks.acquire(keys, timeout=2):
                    await asyncio.sleep(0)

        await asyncio.gather(worker([(1, 1), (1, 2)]), worker([(1, 2), (1, 1)]))
        assert len(locks) == 0
