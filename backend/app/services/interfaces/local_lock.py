"""
In-process reservation lock: one asyncio.Lock per villa.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Optional

from app.services.interfaces.reservation_lock import ReservationLock
from app.core.exceptions import StoreFailure
from app.core.metrics import reservation_lock_wait


class LocalReservationLock(ReservationLock):
    """
    Serializes commits per villa inside one event loop.

    Use when:
    - A single API worker serves bookings
    - Tests and local development
    - As the fallback when the Redis lock is unreachable
    """

    def __init__(self, wait_timeout: Optional[float] = None):
        self.wait_timeout = wait_timeout
        self._locks: dict[int, asyncio.Lock] = {}
        # Holders plus waiters per villa; the lock is dropped when this hits zero
        self._users: dict[int, int] = {}

    @property
    def tracked_villas(self) -> set[int]:
        return set(self._locks)

    @asynccontextmanager
    async def hold(self, villa_id: int):
        lock = self._locks.setdefault(villa_id, asyncio.Lock())
        self._users[villa_id] = self._users.get(villa_id, 0) + 1
        try:
            started = time.perf_counter()
            await self._acquire(lock, villa_id)
            reservation_lock_wait.observe(time.perf_counter() - started)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[villa_id] -= 1
            if self._users[villa_id] == 0:
                del self._users[villa_id]
                del self._locks[villa_id]

    async def _acquire(self, lock: asyncio.Lock, villa_id: int) -> None:
        if self.wait_timeout is None:
            await lock.acquire()
            return

        # asyncio.wait leaves the waiter running; _abandon settles it either way
        waiter = asyncio.ensure_future(lock.acquire())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=self.wait_timeout)
        except asyncio.CancelledError:
            self._abandon(lock, waiter)
            raise
        if waiter not in done:
            self._abandon(lock, waiter)
            raise StoreFailure(f"Villa {villa_id} is busy, please try again")

    @staticmethod
    def _abandon(lock: asyncio.Lock, waiter: asyncio.Future) -> None:
        if waiter.done() and not waiter.cancelled():
            lock.release()
        else:
            waiter.cancel()
