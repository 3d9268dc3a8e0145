"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union
from pydantic import BaseModel


class BookingCreate(BaseModel):
    villa_id: int
    guest_user_id: int
    # Kept as raw tokens; the booking manager parses them so a bad date is an
    # invalid_range rejection like any other range problem
    start_date: Union[str, int]
    end_date: Union[str, int]
    adults: int
    children: int = 0
    infants: int = 0
    is_guest_id_provided: bool = False

    # Accepted for compatibility with older clients and ignored: the price is
    # always recomputed from the villa
    total_price: Optional[Decimal] = None
    cleaning_fee: Optional[Decimal] = None
    service_fee: Optional[Decimal] = None


class BookingResponse(BaseModel):
    id: int
    villa_id: int
    guest_user_id: int
    host_user_id: int
    start_date: date
    end_date: date
    adults: int
    children: int
    infants: int
    nights: int
    subtotal: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    total_price: Decimal
    status: str
    payment_status: str
    cancellation_reason: Optional[str]
    is_guest_id_provided: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: str
