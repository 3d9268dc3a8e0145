"""
Availability ledger: which nights of a villa can still be booked.

A night is unavailable when an active (pending or confirmed) booking covers
it, or when the host has a calendar row for it with is_blocked=true or
is_available=false. Booked nights are always derived from the bookings
table; nothing writes them into calendar_blocks.

Ranges are half-open [start, end). Two ranges [a0, a1) and [b0, b1) overlap
iff a0 < b1 and b0 < a1, so a stay ending on the 15th never conflicts with
one starting on the 15th.

Reads here are advisory. The booking commit repeats is_range_free inside its
own locked transaction, passing that transaction's session in.
"""

import re
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.exceptions import Forbidden, NotFound, RejectionReason, ValidationError
from app.core.logging import get_logger
from app.core.security import Actor
from app.db.session import store_errors
from app.repositories import BookingRepository, CalendarBlockRepository, VillaRepository
from app.services.interfaces.reservation_lock import ReservationLock

logger = get_logger(__name__)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_calendar_date(value) -> date:
    """Accept a date or a strict YYYY-MM-DD token."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str) and _DATE_PATTERN.match(value):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(
        RejectionReason.INVALID_RANGE,
        f"Invalid calendar date {value!r}; expected YYYY-MM-DD",
    )


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    return a_start < b_end and b_start < a_end


def iter_nights(start: date, end: date) -> Iterator[date]:
    day = start
    while day < end:
        yield day
        day += timedelta(days=1)


def require_ordered_range(start: date, end: date) -> None:
    if start >= end:
        raise ValidationError(
            RejectionReason.INVALID_RANGE,
            f"start_date {start} must be before end_date {end}",
        )


class AvailabilityLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        reservation_lock: ReservationLock,
        max_window_days: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.reservation_lock = reservation_lock
        self.max_window_days = max_window_days or get_settings().CALENDAR_MAX_WINDOW_DAYS

    @asynccontextmanager
    async def _reader(self, session: Optional[AsyncSession]):
        if session is not None:
            yield session
            return
        async with self.session_factory() as db:
            yield db

    async def is_range_free(
        self,
        villa_id: int,
        start: date,
        end: date,
        *,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        require_ordered_range(start, end)

        with store_errors("availability check"):
            async with self._reader(session) as db:
                bookings = await BookingRepository(db).list_active_bookings(villa_id, start, end)
                for booking in bookings:
                    if ranges_overlap(booking.start_date, booking.end_date, start, end):
                        logger.debug(
                            "range_overlaps_booking",
                            villa_id=villa_id,
                            booking_id=booking.id,
                        )
                        return False

                blocks = await CalendarBlockRepository(db).list_blocks(villa_id, start, end)
                return not any(block.blocks_stay for block in blocks)

    async def list_unavailable_dates(
        self,
        villa_id: int,
        window_start: date,
        window_end: date,
        *,
        session: Optional[AsyncSession] = None,
    ) -> set[date]:
        """Booked or blocked dates inside [window_start, window_end)."""
        require_ordered_range(window_start, window_end)
        if (window_end - window_start).days > self.max_window_days:
            raise ValidationError(
                RejectionReason.INVALID_RANGE,
                f"Calendar window may span at most {self.max_window_days} days",
            )

        unavailable: set[date] = set()
        with store_errors("calendar read"):
            async with self._reader(session) as db:
                bookings = await BookingRepository(db).list_active_bookings(
                    villa_id, window_start, window_end
                )
                blocks = await CalendarBlockRepository(db).list_blocks(
                    villa_id, window_start, window_end
                )

        for booking in bookings:
            first = max(booking.start_date, window_start)
            last = min(booking.end_date, window_end)
            unavailable.update(iter_nights(first, last))
        unavailable.update(block.date for block in blocks if block.blocks_stay)
        return unavailable

    async def block_dates(self, villa_id: int, dates: Iterable, actor: Actor) -> list[date]:
        return await self._write_blocks(villa_id, dates, actor, blocked=True)

    async def unblock_dates(self, villa_id: int, dates: Iterable, actor: Actor) -> list[date]:
        return await self._write_blocks(villa_id, dates, actor, blocked=False)

    def _parse_dates(self, dates: Iterable) -> list[date]:
        days = sorted({parse_calendar_date(value) for value in dates})
        if not days:
            raise ValidationError(RejectionReason.INVALID_RANGE, "At least one date is required")
        if len(days) > self.max_window_days:
            raise ValidationError(
                RejectionReason.INVALID_RANGE,
                f"At most {self.max_window_days} dates per request",
            )
        return days

    async def _write_blocks(
        self, villa_id: int, dates: Iterable, actor: Actor, blocked: bool
    ) -> list[date]:
        days = self._parse_dates(dates)

        # Same lock as booking commits: a block and a booking never interleave
        async with self.reservation_lock.hold(villa_id):
            with store_errors("calendar update"):
                async with self.session_factory() as db:
                    async with db.begin():
                        villa = await VillaRepository(db).get_villa(villa_id, for_update=True)
                        if villa is None:
                            raise NotFound(
                                RejectionReason.VILLA_NOT_FOUND, f"Villa {villa_id} not found"
                            )
                        if not actor.is_admin and villa.host_user_id != actor.user_id:
                            logger.warning(
                                "calendar_update_forbidden",
                                villa_id=villa_id,
                                user_id=actor.user_id,
                                host_user_id=villa.host_user_id,
                            )
                            raise Forbidden(
                                RejectionReason.NOT_OWNER,
                                "Only the villa's host can change its calendar",
                            )

                        await CalendarBlockRepository(db).upsert_blocks(
                            villa_id,
                            days,
                            is_available=not blocked,
                            is_blocked=blocked,
                        )

        logger.info(
            "calendar_dates_blocked" if blocked else "calendar_dates_unblocked",
            villa_id=villa_id,
            user_id=actor.user_id,
            dates=len(days),
            first=days[0].isoformat(),
            last=days[-1].isoformat(),
        )
        return days
