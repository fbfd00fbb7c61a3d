"""Per-case serialization of workflow invocations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class CaseLockRegistry:
    """Hands out one asyncio.Lock per case id.

    Two invocations for the same case run one after the other; different
    cases never wait on each other. Locks are kept for the life of the
    process (one small object per case touched).
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def lock_for(self, case_id: int) -> asyncio.Lock:
        lock = self._locks.get(case_id)
        if lock is None:
            lock = self._locks[case_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, case_id: int) -> AsyncIterator[None]:
        async with self.lock_for(case_id):
            yield

    def __len__(self) -> int:
        return len(self._locks)
