"""
Remi - Keyed async lock
========================
One ``asyncio.Lock`` per key, created on demand and discarded once no
task holds or waits for it, so the table does not grow with the number
of distinct senders ever seen.

Usage:
    locks = KeyedLock()
    async with locks.hold(user_id):
        ...  # only one task per user_id in here
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    __slots__ = ("_locks", "_users")

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}


    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


    def __len__(self) -> int:
        return len(self._locks)
