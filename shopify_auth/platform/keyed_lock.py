"""
Per-key asyncio locks.

Serializes work for the same key (e.g. exchange-and-persist for one session
id) while letting different keys proceed concurrently. Locks are released
from the registry once no task holds or waits on them.

Usage:
    locks = KeyedLock()

    async with locks.hold("offline_my-store.myshopify.com"):
        session = await store.get(session_id)
        ...
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple


class KeyedLock:
    """Registry of reference-counted asyncio.Lock objects keyed by string."""

    def __init__(self):
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock, waiters = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, waiters + 1)

        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._locks[key]
            if waiters <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, waiters - 1)

    def __len__(self) -> int:
        return len(self._locks)
