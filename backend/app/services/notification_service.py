"""
Notification sinks for booking lifecycle events.

Channel layout mirrors what the realtime gateway subscribes to:
  {prefix}:user:{user_id}:bookings    one message per affected party
  {prefix}:villa:{villa_id}:bookings  one message per change, for calendar watchers
"""

import json
from typing import Optional

from redis.exceptions import RedisError

from app.services.interfaces.notification_sink import NotificationSink, BookingNotification
from app.infrastructure.redis_client import get_redis
from app.core.config import get_settings
from app.core.exceptions import StoreFailure
from app.core.logging import get_logger

logger = get_logger(__name__)


class RedisNotificationSink(NotificationSink):
    """Publishes JSON messages on Redis pub/sub for the realtime gateway."""

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or get_settings().NOTIFICATION_CHANNEL_PREFIX

    def channel_for(self, user_id: int) -> str:
        return f"{self.prefix}:user:{user_id}:bookings"

    def villa_channel_for(self, villa_id: int) -> str:
        return f"{self.prefix}:villa:{villa_id}:bookings"

    async def publish(self, notification: BookingNotification) -> None:
        client = await get_redis()
        if client is None:
            raise StoreFailure("Notification channel unavailable")

        if notification.is_villa_broadcast:
            channel = self.villa_channel_for(notification.villa_id)
        else:
            channel = self.channel_for(notification.recipient_user_id)
        try:
            receivers = await client.publish(
                channel, json.dumps(notification.to_message(), default=str)
            )
        except RedisError as e:
            raise StoreFailure(f"Notification publish failed: {e}") from e
        logger.debug("notification_published", channel=channel, receivers=receivers)


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the structured log. Used when Redis is disabled."""

    async def publish(self, notification: BookingNotification) -> None:
        logger.info(
            "booking_notification",
            notification_event=notification.event,
            recipient_user_id=notification.recipient_user_id,
            villa_id=notification.villa_id,
            booking_id=notification.booking.get("id"),
            status=notification.booking.get("status"),
        )


class InMemoryNotificationSink(NotificationSink):
    """Keeps every notification in a list. Handy for tests and local tooling."""

    def __init__(self):
        self.notifications: list[BookingNotification] = []

    async def publish(self, notification: BookingNotification) -> None:
        self.notifications.append(notification)

    def events_for(self, user_id: int) -> list[str]:
        return [n.event for n in self.notifications if n.recipient_user_id == user_id]

    def events_for_villa(self, villa_id: int) -> list[str]:
        return [n.event for n in self.notifications if n.is_villa_broadcast and n.villa_id == villa_id]

    def clear(self) -> None:
        self.notifications.clear()
