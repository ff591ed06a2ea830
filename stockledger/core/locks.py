"""
Per-key mutual exclusion for stock balance rows.

Each ``(part_id, location_id)`` pair gets its own ``asyncio.Lock``; unrelated
keys never wait on each other. Multi-key acquisitions always lock in
ascending key order so two transfers in opposite directions cannot deadlock.
Locks are dropped from the registry once nobody holds or waits for them.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Tuple

from stockledger.core.exceptions import ConcurrencyConflict

StockKey = Tuple[int, int]


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLockRegistry:
    def __init__(self):
        self._entries: Dict[StockKey, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, key: StockKey) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.lock.locked())

    def _checkout(self, key: StockKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        return entry

    def _checkin(self, key: StockKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.users -= 1
        if entry.users <= 0:
            del self._entries[key]

    @staticmethod
    def canonical_order(keys: Iterable[StockKey]) -> List[StockKey]:
        return sorted(set(keys))

    @asynccontextmanager
    async def acquire(self, keys: Iterable[StockKey], timeout: float):
        """Hold every lock in ``keys`` for the body of the ``async with``.

        Raises ConcurrencyConflict if the locks cannot all be taken within
        ``timeout`` seconds; nothing stays held in that case.
        """
        ordered = self.canonical_order(keys)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        held: List[StockKey] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                remaining = max(deadline - loop.time(), 0)
                try:
                    await asyncio.wait_for(entry.lock.acquire(), timeout=remaining)
                except asyncio.TimeoutError:
                    self._checkin(key)
                    raise ConcurrencyConflict(
                        f"Timed out after {timeout}s waiting for stock lock {key}",
                        keys=ordered,
                    )
                except BaseException:
                    self._checkin(key)
                    raise
                held.append(key)
            yield ordered
        finally:
            for key in reversed(held):
                self._entries[key].lock.release()
                self._checkin(key)
