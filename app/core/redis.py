import json

import redis.asyncio as redis
from app.core.config import settings

NOTIFICATIONS_PREFIX = "notifications"
CHANGES_PREFIX = "appointments"

class RedisClient:
    def __init__(self, url: str | None = None):
        self.redis = redis.from_url(url or settings.REDIS_URL, encoding="utf-8", decode_responses=True)

    async def publish_notification(self, actor_id: str, payload: dict):
        await self.redis.publish(f"{NOTIFICATIONS_PREFIX}:{actor_id}", json.dumps(payload))

    def change_subscription(self):
        """Pub/sub handle for appointment change events; caller subscribes and closes it."""
        return self.redis.pubsub()

    async def close(self):
        await self.redis.aclose()

redis_client = RedisClient()
