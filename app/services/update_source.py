"""
Background feeds of external calendar changes.

Polling and Redis push both end in ``CalendarSession.refresh`` and therefore
in ``CalendarReconciler.merge_external``; neither touches appointment state
any other way.
"""
import asyncio
import json
from typing import Optional

import redis.exceptions

from app.core.config import settings
from app.core.exceptions import RemoteReadError
from app.core.logger import get_logger
from app.core.redis import CHANGES_PREFIX, RedisClient
from app.services.calendar_session import CalendarSession, SessionRegistry

logger = get_logger("updates")


async def refresh_quietly(session: CalendarSession) -> None:
    try:
        await session.refresh()
    except RemoteReadError as exc:
        # Unknown state; try again on the next tick or event
        logger.warning("Background refresh skipped: %s", exc.detail)


class PollingUpdateSource:
    def __init__(self, registry: SessionRegistry, interval_seconds: Optional[float] = None):
        self.registry = registry
        self.interval_seconds = interval_seconds or settings.POLL_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> None:
        self.registry.evict_idle()
        for session in self.registry.sessions():
            await refresh_quietly(session)

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.poll_once()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            logger.info("Polling for calendar changes every %ss", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class RedisChangeListener:
    """Refreshes sessions when the backend announces a change on ``appointments:*``.

    Messages are JSON objects carrying ``doctor_id`` and/or ``patient_id``.
    """

    def __init__(self, registry: SessionRegistry, client: RedisClient):
        self.registry = registry
        self.client = client
        self._task: Optional[asyncio.Task] = None

    async def handle_message(self, data: str) -> int:
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed change event: %r", data)
            return 0
        if not isinstance(payload, dict):
            logger.warning("Ignoring malformed change event: %r", data)
            return 0
        sessions = self.registry.matching(
            doctor_id=payload.get("doctor_id"),
            patient_id=payload.get("patient_id"),
        )
        for session in sessions:
            await refresh_quietly(session)
        return len(sessions)

    async def run(self) -> None:
        pubsub = self.client.change_subscription()
        await pubsub.psubscribe(f"{CHANGES_PREFIX}:*")
        logger.info("Listening for appointment changes on %s:*", CHANGES_PREFIX)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                await self.handle_message(message.get("data"))
        except redis.exceptions.RedisError as exc:
            logger.error("Change listener stopped: %s", exc)
        finally:
            await pubsub.aclose()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
