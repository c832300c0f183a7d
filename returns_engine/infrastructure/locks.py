"""In-process keyed mutual exclusion for wallets and rule activation"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand and dropped when idle.

    Locks are bound to the running event loop; if the registry is used from
    a new loop (e.g. a fresh test loop) it starts over with new locks.
    Cross-process exclusion is the database row lock's job.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def _lock_for(self, key: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            self._loop = loop
            self._locks.clear()
            self._users.clear()

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _release_key(self, key: str) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = remaining

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Acquire every key in sorted order; release all on any exit path"""
        ordered = sorted(set(keys))
        acquired: list[tuple[str, asyncio.Lock]] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_key(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release_key(key)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


# Process-wide registries shared by every request
wallet_locks = KeyedLock()
activation_lock = KeyedLock()
catalog_lock = KeyedLock()

ACTIVATION_KEY = "plan_rule_activation"
CATALOG_KEY = "investment_plan_catalog"
