"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .reservation_lock import ReservationLock
from .local_lock import LocalReservationLock
from .notification_sink import NotificationSink, BookingNotification

__all__ = ['ReservationLock', 'LocalReservationLock', 'NotificationSink', 'BookingNotification']
