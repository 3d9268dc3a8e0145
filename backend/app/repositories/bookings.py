from datetime import date
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BookingConflict
from app.models.booking import Booking, ACTIVE_STATUSES, EXCLUSION_CONSTRAINT_NAME

# PostgreSQL SQLSTATE for exclusion_violation
EXCLUSION_VIOLATION = "23P01"


def _is_exclusion_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == EXCLUSION_VIOLATION:
        return True
    return EXCLUSION_CONSTRAINT_NAME in str(orig)


class BookingRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_bookings(
        self,
        villa_id: int,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> list[Booking]:
        """
        Active bookings of a villa, optionally only those overlapping
        [window_start, window_end). Overlap is the half-open rule
        start < window_end AND window_start < end.
        """
        query = select(Booking).where(
            Booking.villa_id == villa_id,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        if window_start is not None and window_end is not None:
            query = query.where(
                Booking.start_date < window_end,
                Booking.end_date > window_start,
            )
        result = await self.db.execute(query.order_by(Booking.start_date.asc()))
        return list(result.scalars().all())

    async def insert_booking_atomic(
        self,
        booking: Booking,
        expected_free_check: Callable[[], Awaitable[bool]],
    ) -> Booking:
        """
        Re-run the availability check and insert, inside the caller's
        transaction. Raises BookingConflict when the check fails or when the
        store itself refuses the row (exclusion constraint).
        """
        if not await expected_free_check():
            raise BookingConflict(f"villa {booking.villa_id} range already taken")

        self.db.add(booking)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            if _is_exclusion_violation(exc):
                raise BookingConflict(f"villa {booking.villa_id} range already taken") from exc
            raise
        await self.db.refresh(booking)
        return booking

    async def get_booking(self, booking_id: int, for_update: bool = False) -> Optional[Booking]:
        query = select(Booking).where(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def update_status(
        self,
        booking: Booking,
        expected_status: str,
        new_status: str,
        cancellation_reason: Optional[str] = None,
    ) -> bool:
        """
        Conditional status write: only succeeds if the row still has
        expected_status. Returns False when another transition won.
        """
        values = {"status": new_status, "updated_at": func.now()}
        if cancellation_reason is not None:
            values["cancellation_reason"] = cancellation_reason

        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False

        await self.db.refresh(booking)
        return True

    async def list_for_user(
        self,
        user_id: int,
        as_host: bool = False,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Booking], int]:
        owner_column = Booking.host_user_id if as_host else Booking.guest_user_id
        query = select(Booking).where(owner_column == user_id)
        if status:
            query = query.where(Booking.status == status)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar()

        result = await self.db.execute(
            query
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total
