"""
Villa calendar endpoints with Redis caching on the calendar read.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_availability_ledger
from app.db.session import get_db, store_errors
from app.core.exceptions import NotFound, RejectionReason
from app.core.logging import get_logger
from app.core.security import Actor, get_current_actor
from app.repositories import VillaRepository
from app.schemas.villa import (
    AvailabilityResponse, CalendarResponse, CalendarUpdate, CalendarUpdateResponse,
)
from app.services.availability_ledger import AvailabilityLedger
from app.services.cache_service import (
    get_calendar_generation, get_cached_calendar, set_cached_calendar,
    invalidate_villa_calendar,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/villas", tags=["Villas"])


async def _require_villa(db: AsyncSession, villa_id: int) -> None:
    with store_errors("villa lookup"):
        villa = await VillaRepository(db).get_villa(villa_id)
    if villa is None:
        raise NotFound(RejectionReason.VILLA_NOT_FOUND, f"Villa {villa_id} not found")


@router.get("/{villa_id}/availability", response_model=AvailabilityResponse)
async def check_availability(
    villa_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """Advisory check; the booking commit decides for real. Not cached."""
    await _require_villa(db, villa_id)
    is_free = await ledger.is_range_free(villa_id, start_date, end_date, session=db)
    return AvailabilityResponse(
        villa_id=villa_id, start_date=start_date, end_date=end_date, is_available=is_free
    )


@router.get("/{villa_id}/calendar", response_model=CalendarResponse)
async def get_calendar(
    villa_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """
    Booked and blocked dates in [start_date, end_date).
    Cached per villa and window; dropped on any booking or block change.
    """
    generation = await get_calendar_generation(villa_id)
    cached = await get_cached_calendar(villa_id, start_date, end_date, generation)
    if cached is not None:
        logger.info("calendar_cache_hit", villa_id=villa_id)
        return CalendarResponse(
            villa_id=villa_id,
            start_date=start_date,
            end_date=end_date,
            unavailable_dates=cached,
            cached=True,
        )

    await _require_villa(db, villa_id)
    unavailable = sorted(
        await ledger.list_unavailable_dates(villa_id, start_date, end_date, session=db)
    )
    await set_cached_calendar(villa_id, start_date, end_date, unavailable, generation)
    return CalendarResponse(
        villa_id=villa_id,
        start_date=start_date,
        end_date=end_date,
        unavailable_dates=unavailable,
    )


@router.post("/{villa_id}/calendar/block", response_model=CalendarUpdateResponse)
async def block_dates(
    villa_id: int,
    update: CalendarUpdate,
    actor: Actor = Depends(get_current_actor),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """Host marks dates unavailable."""
    days = await ledger.block_dates(villa_id, update.dates, actor)
    await invalidate_villa_calendar(villa_id)
    return CalendarUpdateResponse(villa_id=villa_id, dates=days, is_blocked=True)


@router.post("/{villa_id}/calendar/unblock", response_model=CalendarUpdateResponse)
async def unblock_dates(
    villa_id: int,
    update: CalendarUpdate,
    actor: Actor = Depends(get_current_actor),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """Host reopens previously blocked dates."""
    days = await ledger.unblock_dates(villa_id, update.dates, actor)
    await invalidate_villa_calendar(villa_id)
    return CalendarUpdateResponse(villa_id=villa_id, dates=days, is_blocked=False)
