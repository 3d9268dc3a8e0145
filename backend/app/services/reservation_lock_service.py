"""
Redis-backed reservation lock for multi-worker deployments.
Implements ReservationLock using redis-py's distributed Lock.

Circuit Breaker Pattern:
  On Redis failure, the lock "fails over" to the in-process lock instead of
  refusing bookings. Within one worker, commits stay serialized; across
  workers, PostgreSQL takes over: the commit transaction locks the villa row
  (SELECT ... FOR UPDATE) and the bookings table carries an EXCLUDE
  constraint, so overlapping rows still cannot both be written.

  Tradeoff: during a Redis outage concurrent workers queue on the villa row
  instead of on Redis. Correctness is unchanged.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from redis.exceptions import LockError, RedisError

from app.services.interfaces.reservation_lock import ReservationLock
from app.services.interfaces.local_lock import LocalReservationLock
from app.infrastructure.redis_client import get_redis
from app.core.config import get_settings
from app.core.exceptions import StoreFailure
from app.core.logging import get_logger
from app.core.metrics import (
    redis_connection_errors,
    redis_circuit_breaker_open,
    reservation_lock_fallbacks,
    reservation_lock_wait,
)

logger = get_logger(__name__)


class RedisReservationLock(ReservationLock):
    """
    Redis lock per villa, shared by every API worker.

    Use when:
    - More than one worker process accepts bookings
    - You want contention to queue in Redis rather than on database rows
    """

    def __init__(self, fallback: Optional[LocalReservationLock] = None):
        settings = get_settings()
        self.timeout = settings.RESERVATION_LOCK_TIMEOUT
        self.wait_timeout = settings.RESERVATION_LOCK_WAIT
        self.prefix = settings.NOTIFICATION_CHANNEL_PREFIX
        self.fallback = fallback or LocalReservationLock(wait_timeout=self.wait_timeout)

    def _key(self, villa_id: int) -> str:
        return f"{self.prefix}:villa-lock:{villa_id}"

    @asynccontextmanager
    async def hold(self, villa_id: int):
        client = await get_redis()
        lock = None
        acquired = False
        if client is not None:
            lock = client.lock(
                self._key(villa_id),
                timeout=self.timeout,
                blocking_timeout=self.wait_timeout,
            )
            started = time.perf_counter()
            try:
                acquired = await lock.acquire()
            except RedisError as e:
                redis_connection_errors.inc()
                redis_circuit_breaker_open.set(1)
                logger.warning("reservation_lock_redis_error", villa_id=villa_id, error=str(e))
                lock = None
            else:
                redis_circuit_breaker_open.set(0)
                reservation_lock_wait.observe(time.perf_counter() - started)
                if not acquired:
                    logger.warning("reservation_lock_timeout", villa_id=villa_id)
                    raise StoreFailure(f"Villa {villa_id} is busy, please try again")

        if lock is None:
            reservation_lock_fallbacks.inc()
            async with self.fallback.hold(villa_id):
                yield
            return

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Held past RESERVATION_LOCK_TIMEOUT; the row lock covered the commit
                logger.warning("reservation_lock_expired", villa_id=villa_id)
            except RedisError as e:
                redis_connection_errors.inc()
                logger.warning("reservation_lock_release_failed", villa_id=villa_id, error=str(e))
