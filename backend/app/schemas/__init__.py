from app.schemas.booking import (
    BookingCreate, BookingResponse, BookingCancelResponse, BookingListResponse,
)
from app.schemas.villa import (
    AvailabilityResponse, CalendarResponse, CalendarUpdate, CalendarUpdateResponse,
)

__all__ = [
    "BookingCreate", "BookingResponse", "BookingCancelResponse", "BookingListResponse",
    "AvailabilityResponse", "CalendarResponse", "CalendarUpdate", "CalendarUpdateResponse",
]
