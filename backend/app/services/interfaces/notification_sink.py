"""
Notification sink interface.
The booking core publishes here; delivery (websocket push, polling, email)
is someone else's job.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class BookingNotification:
    """
    Addressed to one user, or broadcast to everyone watching a villa when
    recipient_user_id is None and villa_id is set.
    """

    recipient_user_id: Optional[int]
    event: str
    booking: dict[str, Any]
    villa_id: Optional[int] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_villa_broadcast(self) -> bool:
        return self.recipient_user_id is None and self.villa_id is not None

    def to_message(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "recipient_user_id": self.recipient_user_id,
            "villa_id": self.villa_id,
            "occurred_at": self.occurred_at.isoformat(),
            "booking": self.booking,
        }


class NotificationSink(ABC):
    @abstractmethod
    async def publish(self, notification: BookingNotification) -> None:
        """Hand one notification to the delivery layer. May raise on transport errors."""
        pass
