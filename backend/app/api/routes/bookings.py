"""
Booking endpoints: submit, read, confirm, cancel.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_booking_manager
from app.db.session import get_db
from app.schemas.booking import (
    BookingCreate, BookingResponse, BookingCancelResponse, BookingListResponse,
)
from app.services.booking_service import (
    BookingTransactionManager, get_booking_for_actor, list_bookings_for_actor,
)
from app.services.cache_service import invalidate_villa_calendar
from app.core.security import Actor, get_current_actor

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    """
    Request a stay. The booking starts as pending.

    The price is computed from the villa; totals in the body are ignored.
    Overlapping requests for the same villa are serialized, so exactly one of
    them wins and the rest get 409 dates_unavailable.
    """
    booking = await manager.submit_booking(booking_data, actor)
    await invalidate_villa_calendar(booking.villa_id)
    return booking


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    as_role: Literal["guest", "host"] = Query("guest"),
    status_filter: Optional[Literal["pending", "confirmed", "cancelled"]] = Query(
        None, alias="status"
    ),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Bookings the caller made (as_role=guest) or received on their villas (as_role=host)."""
    bookings, total = await list_bookings_for_actor(
        db, actor, as_host=as_role == "host", status=status_filter, page=page, page_size=page_size
    )
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await get_booking_for_actor(db, booking_id, actor)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    """Host (or admin) accepts a pending request."""
    booking = await manager.confirm_booking(booking_id, actor)
    await invalidate_villa_calendar(booking.villa_id)
    return booking


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_id: int,
    reason: Optional[str] = Query(None, max_length=500),
    actor: Actor = Depends(get_current_actor),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    """Cancel a booking; its nights become bookable again right away."""
    booking = await manager.cancel_booking(booking_id, actor, reason)
    await invalidate_villa_calendar(booking.villa_id)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
    )
