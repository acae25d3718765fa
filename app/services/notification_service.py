from enum import Enum
from typing import Optional, Protocol

import redis.exceptions
from pydantic import BaseModel

from app.core.logger import get_logger
from app.core.redis import RedisClient

logger = get_logger("notifications")

class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

class Notification(BaseModel):
    level: NotificationLevel
    title: str
    message: str = ""
    appointment_id: Optional[str] = None

class NotificationSink(Protocol):
    async def send(self, notification: Notification) -> None:
        ...

class LoggingNotificationSink:
    _levels = {
        NotificationLevel.SUCCESS: 20,
        NotificationLevel.INFO: 20,
        NotificationLevel.WARNING: 30,
        NotificationLevel.ERROR: 40,
    }

    async def send(self, notification: Notification) -> None:
        logger.log(
            self._levels[notification.level],
            "%s: %s",
            notification.title,
            notification.message,
        )

class RedisNotificationSink:
    """Publishes toasts to ``notifications:<actor id>`` for the front-end to display."""

    def __init__(self, client: RedisClient, actor_id: str):
        self.client = client
        self.actor_id = actor_id

    async def send(self, notification: Notification) -> None:
        try:
            await self.client.publish_notification(self.actor_id, notification.model_dump(mode="json"))
        except redis.exceptions.RedisError as exc:
            # Delivery failures never reach the scheduling flow
            logger.warning("Could not publish notification %r: %s", notification.title, exc)

