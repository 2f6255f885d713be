# liverelay/single_flight.py
"""
Per-key asyncio mutex.

Concurrent producers of the same cache key are serialized so that only the
first one hits the origin; the others wait, then re-read the Cache Store.
The table is process-local: separate instances do not coalesce.
"""

import asyncio
import contextlib
from typing import AsyncIterator, Awaitable, Callable, Dict, TypeVar

T = TypeVar("T")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        # holder + waiters; the entry is dropped when this reaches zero
        self.users = 0


class KeyedLock:
    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    async def acquire(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            # asyncio.Lock only queues a waiter when the lock is already held,
            # and release hands off to the oldest waiter via the event loop.
            await entry.lock.acquire()
        except BaseException:
            self._leave(key, entry)
            raise

    def release(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None or not entry.lock.locked():
            raise RuntimeError(f"release of unheld key {key!r}")
        entry.lock.release()
        self._leave(key, entry)

    def _leave(self, key: str, entry: _Entry) -> None:
        entry.users -= 1
        if entry.users <= 0 and self._entries.get(key) is entry:
            del self._entries[key]

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        await self.acquire(key)
        try:
            yield
        finally:
            self.release(key)

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        async with self.hold(key):
            return await fn()
