"""In-process owner-scoped locks."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class OwnerLockRegistry:
    """One ``asyncio.Lock`` per owner key.

    Serializes ledger units of work for the same owner inside this process;
    unrelated owners never wait on each other. Cross-process exclusion comes
    from the row locks taken inside the database transaction.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every service in the process so jobs and requests contend correctly
owner_locks = OwnerLockRegistry()
