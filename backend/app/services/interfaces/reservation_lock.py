"""
Per-villa reservation lock interface.
Allows swapping between in-process and distributed serialization.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager


class ReservationLock(ABC):
    """
    Serializes booking commits and calendar writes for one villa.

    Implementations:
    - LocalReservationLock: asyncio.Lock per villa, single worker process
    - RedisReservationLock: Redis lock per villa, shared across workers

    Different villas never contend with each other.
    """

    @abstractmethod
    def hold(self, villa_id: int) -> AsyncContextManager[None]:
        """
        Hold the villa's lock for the duration of an ``async with`` block.

        Raises:
            StoreFailure: if the lock cannot be obtained in time
        """
        pass
