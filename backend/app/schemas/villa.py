"""
Pydantic schemas for villa calendar endpoints.
"""

from datetime import date
from typing import Union

from pydantic import BaseModel


class AvailabilityResponse(BaseModel):
    villa_id: int
    start_date: date
    end_date: date
    is_available: bool


class CalendarResponse(BaseModel):
    villa_id: int
    start_date: date
    end_date: date
    unavailable_dates: list[date]
    cached: bool = False


class CalendarUpdate(BaseModel):
    # Count and format are checked by the ledger against CALENDAR_MAX_WINDOW_DAYS
    dates: list[Union[str, int]]


class CalendarUpdateResponse(BaseModel):
    villa_id: int
    dates: list[date]
    is_blocked: bool
