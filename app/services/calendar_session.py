import asyncio
import time
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

from app.core.config import settings
from app.core.exceptions import RemoteReadError
from app.core.logger import get_logger
from app.schemas.appointment import Appointment
from app.schemas.auth import CalendarScope, Role
from app.schemas.interval import Interval
from app.schemas.schedule import WeeklySlotsResponse, WorkingHours
from app.services.appointment_repository import AppointmentRepository
from app.services.availability_service import AvailabilityService, day_bounds
from app.services.calendar_reconciler import CalendarReconciler
from app.services.notification_service import (
    LoggingNotificationSink,
    Notification,
    NotificationLevel,
    NotificationSink,
)
from app.services.scheduling_service import SchedulingService

logger = get_logger("session")

class CalendarSession:
    """Everything one calendar view needs: its reconciler and the services around it."""

    def __init__(
        self,
        scope: CalendarScope,
        repository: AppointmentRepository,
        notifier: Optional[NotificationSink] = None,
        availability: Optional[AvailabilityService] = None,
    ):
        self.scope = scope
        self.repository = repository
        self.notifier = notifier or LoggingNotificationSink()
        self.availability = availability or AvailabilityService()
        self.reconciler = CalendarReconciler()
        self.scheduler = SchedulingService(
            repository, self.reconciler, self.availability, self.notifier
        )
        self.loaded = False

    def appointments(self) -> List[Appointment]:
        return self.reconciler.snapshot()

    async def refresh(self) -> List[Appointment]:
        """Pull the backend's view and merge it; returns newly flagged conflicts.

        A failed read leaves the current state untouched: an unreachable
        backend says nothing about what is booked.
        """
        since = self.reconciler.epoch
        try:
            snapshot = await self.repository.list(**self.scope.list_filter)
        except RemoteReadError:
            logger.warning("Refresh of %s %s failed, keeping current state",
                           self.scope.role.value, self.scope.owner_id)
            raise

        conflicts = self.reconciler.merge_external(snapshot, since=since)
        self.scheduler.prune_locks()
        self.loaded = True
        for appointment in conflicts:
            await self.notifier.send(Notification(
                level=NotificationLevel.WARNING,
                title="Slot conflict",
                message=f"{appointment.title or 'Appointment'} at {appointment.interval} "
                        "overlaps a newer booking",
                appointment_id=appointment.id,
            ))
        return conflicts

    def open_slots(
        self,
        doctor_id: str,
        day: date,
        working_hours: Optional[Sequence[WorkingHours]] = None,
    ) -> List[Interval]:
        return self.availability.list_open_slots(
            doctor_id, day, working_hours, self.reconciler.snapshot()
        )

    def weekly_slots(
        self,
        doctor_id: str,
        start_day: date,
        working_hours: Optional[Sequence[WorkingHours]] = None,
    ) -> WeeklySlotsResponse:
        return self.availability.weekly_open_slots(
            doctor_id, start_day, working_hours, self.reconciler.snapshot()
        )

    def blocked(self, doctor_id: str, day: date) -> List[Interval]:
        bounds = day_bounds(day)
        return [
            interval
            for interval in self.availability.blocked_intervals(doctor_id, self.reconciler.snapshot())
            if interval.overlaps(bounds)
        ]

class SessionRegistry:
    """One session per calendar scope, created and loaded on first use."""

    def __init__(
        self,
        repository: AppointmentRepository,
        notifier_factory: Optional[Callable[[CalendarScope], NotificationSink]] = None,
    ):
        self.repository = repository
        self.notifier_factory = notifier_factory or (lambda scope: LoggingNotificationSink())
        self._sessions: Dict[CalendarScope, CalendarSession] = {}
        self._last_used: Dict[CalendarScope, float] = {}
        self._lock = asyncio.Lock()

    async def get(self, scope: CalendarScope) -> CalendarSession:
        async with self._lock:
            session = self._sessions.get(scope)
            if session is None:
                session = CalendarSession(scope, self.repository, self.notifier_factory(scope))
                self._sessions[scope] = session
                logger.info("Opened calendar session for %s %s", scope.role.value, scope.owner_id)
            self._last_used[scope] = time.monotonic()
        if not session.loaded:
            await session.refresh()
        return session

    def sessions(self) -> List[CalendarSession]:
        return list(self._sessions.values())

    def matching(self, doctor_id: Optional[str] = None, patient_id: Optional[str] = None) -> List[CalendarSession]:
        wanted = set()
        if doctor_id:
            wanted.add(CalendarScope(role=Role.DOCTOR, owner_id=doctor_id))
        if patient_id:
            wanted.add(CalendarScope(role=Role.PATIENT, owner_id=patient_id))
        return [session for scope, session in self._sessions.items() if scope in wanted]

    def evict_idle(self, max_idle_seconds: Optional[float] = None, now: Optional[float] = None) -> List[CalendarScope]:
        """Drop sessions nobody asked for recently; sessions with work in flight stay."""
        if max_idle_seconds is None:
            max_idle_seconds = settings.SESSION_IDLE_SECONDS
        now = time.monotonic() if now is None else now
        evicted = [
            scope
            for scope, session in self._sessions.items()
            if now - self._last_used.get(scope, now) > max_idle_seconds
            and session.reconciler.is_settled
        ]
        for scope in evicted:
            del self._sessions[scope]
            self._last_used.pop(scope, None)
            logger.info("Closed idle calendar session for %s %s", scope.role.value, scope.owner_id)
        return evicted
