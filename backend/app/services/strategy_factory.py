"""
Strategy factory for the booking engine's pluggable collaborators.
Chooses the reservation lock and notification sink from settings.
"""

from typing import Optional

from app.services.interfaces.reservation_lock import ReservationLock
from app.services.interfaces.local_lock import LocalReservationLock
from app.services.interfaces.notification_sink import NotificationSink
from app.services.reservation_lock_service import RedisReservationLock
from app.services.notification_service import RedisNotificationSink, LoggingNotificationSink
from app.core.config import get_settings


def build_reservation_lock() -> ReservationLock:
    """
    Strategy selection:
    - local: one asyncio.Lock per villa (single worker)
    - redis: Redis lock per villa (multiple workers)

    Set via RESERVATION_LOCK_BACKEND env var.
    """
    settings = get_settings()
    if settings.RESERVATION_LOCK_BACKEND == "redis" and settings.REDIS_ENABLED:
        return RedisReservationLock()
    return LocalReservationLock(wait_timeout=settings.RESERVATION_LOCK_WAIT)


def build_notification_sink() -> NotificationSink:
    settings = get_settings()
    if settings.REDIS_ENABLED:
        return RedisNotificationSink()
    return LoggingNotificationSink()


# Singleton instances
_lock: Optional[ReservationLock] = None
_sink: Optional[NotificationSink] = None


def get_reservation_lock() -> ReservationLock:
    """Get reservation lock singleton."""
    global _lock
    if _lock is None:
        _lock = build_reservation_lock()
    return _lock


def get_notification_sink() -> NotificationSink:
    """Get notification sink singleton."""
    global _sink
    if _sink is None:
        _sink = build_notification_sink()
    return _sink


def reset_strategies() -> None:
    """Drop the singletons; the next request builds fresh ones."""
    global _lock, _sink
    _lock = None
    _sink = None
