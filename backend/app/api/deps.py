"""
FastAPI dependencies wiring the booking core to process-wide collaborators.
Tests override get_availability_ledger / get_booking_manager directly.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.db.session import get_session_factory
from app.services.availability_ledger import AvailabilityLedger
from app.services.booking_service import BookingTransactionManager
from app.services.interfaces.notification_sink import NotificationSink
from app.services.interfaces.reservation_lock import ReservationLock
from app.services.strategy_factory import get_notification_sink, get_reservation_lock


def get_availability_ledger(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    reservation_lock: ReservationLock = Depends(get_reservation_lock),
) -> AvailabilityLedger:
    return AvailabilityLedger(session_factory, reservation_lock)


def get_booking_manager(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
    reservation_lock: ReservationLock = Depends(get_reservation_lock),
    notification_sink: NotificationSink = Depends(get_notification_sink),
) -> BookingTransactionManager:
    return BookingTransactionManager(session_factory, ledger, reservation_lock, notification_sink)
