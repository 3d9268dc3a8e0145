"""
Record stores the booking core depends on.
Each repository wraps one AsyncSession and never commits on its own;
transaction boundaries belong to the caller.
"""

from .users import UserRepository
from .villas import VillaRepository
from .bookings import BookingRepository
from .calendar import CalendarBlockRepository

__all__ = ['UserRepository', 'VillaRepository', 'BookingRepository', 'CalendarBlockRepository']
