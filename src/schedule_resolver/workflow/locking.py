"""Per-key critical sections for pending request submission."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from schedule_resolver.errors import StoreUnavailableError


class KeyedLockRegistry:
    """Short-lived asyncio locks keyed by (staff_id, date, pending_type).

    "Check for an active request, then insert" runs under the key's lock so
    two racing submissions for the same key are serialized: the second one
    sees the first one's row. The partial unique index on the adjustment
    table covers submissions coming from other processes.

    Locks are dropped once no task holds or waits for them.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key``; fail after ``timeout`` seconds of waiting."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            acquire = asyncio.ensure_future(lock.acquire())
            try:
                done, _ = await asyncio.wait({acquire}, timeout=self.timeout)
            except BaseException:
                _abandon(acquire, lock)
                raise
            if not done:
                _abandon(acquire, lock)
                raise StoreUnavailableError(
                    "submit", f"could not lock {key!r} within {self.timeout}s"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


def _abandon(acquire: asyncio.Future, lock: asyncio.Lock) -> None:
    """Give up on an acquire attempt without leaving the lock owned by nobody.

    An attempt that already succeeded is released; one still waiting is
    cancelled, and released later should it win the race with the cancel.
    """

    def _release_if_acquired(attempt: asyncio.Future) -> None:
        if not attempt.cancelled() and attempt.exception() is None:
            lock.release()

    if acquire.done():
        _release_if_acquired(acquire)
        return
    acquire.cancel()
    acquire.add_done_callback(_release_if_acquired)
