from app.models.user import User
from app.models.villa import Villa
from app.models.calendar_block import CalendarBlock
from app.models.booking import Booking

__all__ = ["User", "Villa", "CalendarBlock", "Booking"]
