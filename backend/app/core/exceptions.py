"""
Typed rejections raised by the booking core.

Every rejection carries a RejectionReason so route handlers (and any other
caller) can branch on the kind instead of parsing messages. The HTTP status
lives on the class; the API layer turns these into JSON error bodies.
"""

from enum import Enum
from typing import Iterable, Optional

from fastapi import status


class RejectionReason(str, Enum):
    INVALID_RANGE = "invalid_range"
    INVALID_GUEST_COUNT = "invalid_guest_count"
    VILLA_NOT_FOUND = "villa_not_found"
    GUEST_NOT_FOUND = "guest_not_found"
    BOOKING_NOT_FOUND = "booking_not_found"
    BELOW_MINIMUM_STAY = "below_minimum_stay"
    OVER_OCCUPANCY = "over_occupancy"
    NOT_PUBLISHED = "not_published"
    CANCELLATION_NOT_ALLOWED = "cancellation_not_allowed"
    IDENTITY_MISMATCH = "identity_mismatch"
    NOT_OWNER = "not_owner"
    DATES_UNAVAILABLE = "dates_unavailable"
    INVALID_TRANSITION = "invalid_transition"
    STORE_FAILURE = "store_failure"


class BookingError(Exception):
    """Base class for every rejection the booking core can produce."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: RejectionReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason.value}

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(reason={self.reason.value}, message={self.message!r})>"


class ValidationError(BookingError):
    """Structurally malformed input: bad dates, impossible guest counts."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PolicyViolation(BookingError):
    """Well-formed request that breaks a villa rule."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Forbidden(BookingError):
    """Caller is neither the owner of the resource nor an admin."""

    status_code = status.HTTP_403_FORBIDDEN


class DatesUnavailable(BookingError):
    """
    Range overlaps an active booking or a host block.

    Raised both for ranges that were already taken and for commits that lost
    the race to a concurrent submission; callers cannot tell them apart.
    """

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Selected dates are unavailable"):
        super().__init__(RejectionReason.DATES_UNAVAILABLE, message)


class InvalidTransition(BookingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str):
        super().__init__(RejectionReason.INVALID_TRANSITION, message)


class StoreFailure(BookingError):
    """The persistence layer (or the lock backend) is unavailable. Not retried."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Booking store unavailable"):
        super().__init__(RejectionReason.STORE_FAILURE, message)


class BookingConflict(Exception):
    """Raised by the booking store when the atomic insert is refused."""


# Request fields whose malformed values are ordinary rejections, not schema errors
_FIELD_REASONS = {
    "start_date": RejectionReason.INVALID_RANGE,
    "end_date": RejectionReason.INVALID_RANGE,
    "dates": RejectionReason.INVALID_RANGE,
    "adults": RejectionReason.INVALID_GUEST_COUNT,
    "children": RejectionReason.INVALID_GUEST_COUNT,
    "infants": RejectionReason.INVALID_GUEST_COUNT,
}


def rejection_from_request_errors(errors: Iterable[dict]) -> Optional[ValidationError]:
    """First request validation error that maps onto a rejection reason, if any."""
    for error in errors:
        for part in error.get("loc", ()):
            reason = _FIELD_REASONS.get(part)
            if reason is not None:
                return ValidationError(reason, f"Invalid {part}: {error.get('msg', 'malformed value')}")
    return None
