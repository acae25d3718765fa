"""
Use-case layer for calendar changes.

Each action goes Requested -> Validating -> (Rejected-Locally | Submitting)
-> (Confirmed | Failed-Rolled-Back). Local validation never touches the
network. Once submitting, the reconciler already shows the optimistic change
and this service is the one place that undoes it if the backend refuses.

Actions on the same appointment id run one after another (per-id
``asyncio.Lock``); actions on different ids interleave freely.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, Optional

from app.core.exceptions import (
    MissingDoctorError,
    MissingPatientError,
    NotFoundError,
    SchedulingError,
    SlotConflictError,
)
from app.core.logger import get_logger
from app.core.utils import generate_temp_id, is_temp_id
from app.schemas.appointment import (
    DEFAULT_STATUS_BY_KIND,
    DOCTOR_REQUIRED_KINDS,
    PATIENT_REQUIRED_KINDS,
    Appointment,
    AppointmentCreate,
    AppointmentKind,
    AppointmentStatus,
)
from app.schemas.interval import Interval
from app.services.appointment_repository import AppointmentRepository
from app.services.availability_service import AvailabilityService
from app.services.calendar_reconciler import CalendarReconciler
from app.services.notification_service import (
    LoggingNotificationSink,
    Notification,
    NotificationLevel,
    NotificationSink,
)

logger = get_logger("scheduling")


class SchedulingService:
    def __init__(
        self,
        repository: AppointmentRepository,
        reconciler: CalendarReconciler,
        availability: Optional[AvailabilityService] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        self.repository = repository
        self.reconciler = reconciler
        self.availability = availability or AvailabilityService()
        self.notifier = notifier or LoggingNotificationSink()
        self._locks: Dict[str, _IdLock] = {}

    # Creation

    async def schedule(
        self,
        doctor_id: Optional[str],
        interval: Interval,
        kind: AppointmentKind = AppointmentKind.CONSULTATION,
        patient_id: Optional[str] = None,
        notes: Optional[str] = None,
        title: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> Appointment:
        label = _label(kind)
        logger.info("schedule %s requested for doctor %s at %s", kind.value, doctor_id, interval)

        try:
            self._check_participants(kind, doctor_id, patient_id)
            if doctor_id:
                self._check_available(doctor_id, interval)
        except SchedulingError as exc:
            await self._notify_failure(f"{label} not scheduled", exc)
            raise

        draft = Appointment(
            id=generate_temp_id(),
            title=title or label,
            interval=interval,
            kind=kind,
            status=status or DEFAULT_STATUS_BY_KIND[kind],
            doctor_id=doctor_id,
            patient_id=patient_id,
            notes=notes,
        )

        async with self._serialized(draft.id):
            self.reconciler.apply_optimistic(draft)
            try:
                created = await self.repository.create(AppointmentCreate.from_appointment(draft))
            except SchedulingError as exc:
                self.reconciler.rollback(draft.id)
                await self._notify_failure(f"{label} not scheduled", exc, draft.id)
                raise
            self.reconciler.confirm(draft.id, created)
            self._rebind_lock(draft.id, created.id)

        logger.info("schedule confirmed: %s -> %s", draft.id, created.id)
        await self._notify(NotificationLevel.SUCCESS, f"{label} scheduled", str(created.interval), created.id)
        return created

    async def request_consultation(
        self,
        doctor_id: str,
        patient_id: str,
        interval: Interval,
        notes: Optional[str] = None,
        title: str = "Consultation Request",
    ) -> Appointment:
        """Patient-initiated booking; it stays pending until the doctor approves it."""
        return await self.schedule(
            doctor_id,
            interval,
            kind=AppointmentKind.CONSULTATION,
            patient_id=patient_id,
            notes=notes,
            title=title,
            status=AppointmentStatus.PENDING,
        )

    async def block_time(
        self,
        doctor_id: str,
        interval: Interval,
        title: str = "Unavailable",
        notes: Optional[str] = None,
    ) -> Appointment:
        return await self.schedule(
            doctor_id, interval, kind=AppointmentKind.BLOCKED, notes=notes, title=title
        )

    # Changes to an existing appointment

    async def reschedule(self, appointment_id: str, new_interval: Interval) -> Appointment:
        async with self._serialized(appointment_id):
            current = self._require(appointment_id)
            return await self._reschedule(current, lambda _: new_interval)

    async def move(self, appointment_id: str, new_interval: Interval) -> Appointment:
        return await self.reschedule(appointment_id, new_interval)

    async def resize(self, appointment_id: str, new_end: datetime) -> Appointment:
        async with self._serialized(appointment_id):
            current = self._require(appointment_id)
            # The start is read under the lock so a queued move is taken into account
            return await self._reschedule(current, lambda interval: interval.with_end(new_end))

    async def update_details(
        self,
        appointment_id: str,
        title: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        fields = {}
        if title is not None:
            fields["title"] = title
        if notes is not None:
            fields["notes"] = notes
        async with self._serialized(appointment_id):
            current = self._require(appointment_id)
            if not fields:
                return current
            label = _label(current.kind)
            return await self._submit_update(
                current,
                fields,
                failure_title=f"{label} not updated",
                success_title=f"{label} updated",
            )

    async def approve(self, appointment_id: str) -> Appointment:
        return await self._decide(appointment_id, AppointmentStatus.CONFIRMED, "approved")

    async def reject(self, appointment_id: str) -> Appointment:
        # A rejected booking is no longer booked, so its slot is free again
        return await self._decide(appointment_id, AppointmentStatus.REJECTED, "rejected")

    async def delete(self, appointment_id: str) -> None:
        async with self._serialized(appointment_id):
            real_id = self.reconciler.resolve(appointment_id)
            prior = self.reconciler.begin_delete(real_id)
            label = _label(prior.kind) if prior else "Appointment"

            # A temp id that never got a backend id has nothing to delete remotely
            if not is_temp_id(real_id):
                try:
                    await self.repository.delete(real_id)
                except SchedulingError as exc:
                    self.reconciler.rollback_delete(real_id, prior)
                    await self._notify_failure(f"{label} not deleted", exc, real_id)
                    raise
            self.reconciler.finish_delete(real_id)

        self.prune_locks()
        logger.info("delete confirmed: %s", real_id)
        await self._notify(NotificationLevel.SUCCESS, f"{label} deleted", "", real_id)

    async def cancel(self, appointment_id: str) -> None:
        await self.delete(appointment_id)

    # Internals

    async def _reschedule(self, current: Appointment, build_interval) -> Appointment:
        label = _label(current.kind)
        try:
            new_interval = build_interval(current.interval)
            if current.doctor_id:
                self._check_available(current.doctor_id, new_interval, exclude_id=current.id)
        except SchedulingError as exc:
            await self._notify_failure(f"{label} not moved", exc, current.id)
            raise
        return await self._submit_update(
            current,
            {"interval": new_interval},
            failure_title=f"{label} not moved",
            success_title=f"{label} rescheduled",
        )

    async def _decide(
        self, appointment_id: str, target: AppointmentStatus, verb: str
    ) -> Appointment:
        async with self._serialized(appointment_id):
            current = self._require(appointment_id)
            label = _label(current.kind)
            flipped = current.model_copy(update={"status": target})
            prior = self.reconciler.apply_optimistic(flipped)
            try:
                if target == AppointmentStatus.CONFIRMED:
                    result = await self.repository.approve(current.id)
                else:
                    result = await self.repository.reject(current.id)
            except SchedulingError as exc:
                self.reconciler.rollback(current.id, prior)
                await self._notify_failure(f"{label} not {verb}", exc, current.id)
                raise
            self.reconciler.confirm(current.id, result)

        logger.info("%s confirmed: %s", verb, result.id)
        await self._notify(NotificationLevel.SUCCESS, f"{label} {verb}", "", result.id)
        return result

    async def _submit_update(
        self,
        current: Appointment,
        fields: dict,
        failure_title: str,
        success_title: str,
    ) -> Appointment:
        optimistic = current.model_copy(update=fields)
        prior = self.reconciler.apply_optimistic(optimistic)
        try:
            result = await self.repository.update(current.id, fields)
        except SchedulingError as exc:
            self.reconciler.rollback(current.id, prior)
            await self._notify_failure(failure_title, exc, current.id)
            raise
        self.reconciler.confirm(current.id, result)
        await self._notify(NotificationLevel.SUCCESS, success_title, str(result.interval), result.id)
        return result

    def _check_participants(
        self, kind: AppointmentKind, doctor_id: Optional[str], patient_id: Optional[str]
    ) -> None:
        if kind in PATIENT_REQUIRED_KINDS and not patient_id:
            raise MissingPatientError(f"Select a patient for a {kind.value}")
        if kind in DOCTOR_REQUIRED_KINDS and not doctor_id:
            raise MissingDoctorError(f"A {kind.value} needs a doctor")

    def _check_available(
        self, doctor_id: str, interval: Interval, exclude_id: Optional[str] = None
    ) -> None:
        conflicts = self.availability.find_conflicts(
            doctor_id, interval, self.reconciler.snapshot(), exclude_id=exclude_id
        )
        if conflicts:
            logger.info("Rejected locally: %s overlaps %s", interval, [c.id for c in conflicts])
            raise SlotConflictError(
                f"{interval} overlaps an existing booking",
                conflicting_ids=[c.id for c in conflicts],
            )

    def _require(self, appointment_id: str) -> Appointment:
        appointment = self.reconciler.get(appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} is not on this calendar")
        return appointment

    def _lock_for(self, appointment_id: str) -> "_IdLock":
        appointment_id = self.reconciler.resolve(appointment_id)
        if appointment_id not in self._locks:
            self._locks[appointment_id] = _IdLock()
        return self._locks[appointment_id]

    @asynccontextmanager
    async def _serialized(self, appointment_id: str):
        entry = self._lock_for(appointment_id)
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1

    def prune_locks(self) -> int:
        """Forget locks of ids that left the calendar and that nobody holds or awaits."""
        idle = [
            appointment_id
            for appointment_id, entry in self._locks.items()
            if entry.users == 0 and appointment_id not in self.reconciler
        ]
        for appointment_id in idle:
            del self._locks[appointment_id]
        return len(idle)

    def _rebind_lock(self, temp_id: str, real_id: str) -> None:
        # Waiters queued on the temp id keep the same lock object under the real id
        if temp_id != real_id and temp_id in self._locks:
            self._locks[real_id] = self._locks.pop(temp_id)

    async def _notify(
        self,
        level: NotificationLevel,
        title: str,
        message: str = "",
        appointment_id: Optional[str] = None,
    ) -> None:
        await self.notifier.send(
            Notification(level=level, title=title, message=message, appointment_id=appointment_id)
        )

    async def _notify_failure(
        self, title: str, exc: SchedulingError, appointment_id: Optional[str] = None
    ) -> None:
        logger.warning("%s: %s", title, exc.detail)
        level = NotificationLevel.WARNING if isinstance(exc, SlotConflictError) else NotificationLevel.ERROR
        await self._notify(level, title, exc.detail, appointment_id)


class _IdLock:
    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


def _label(kind: AppointmentKind) -> str:
    return {
        AppointmentKind.CONSULTATION: "Consultation",
        AppointmentKind.FOLLOWUP: "Follow-up",
        AppointmentKind.BLOCKED: "Blocked time",
        AppointmentKind.MEETING: "Meeting",
        AppointmentKind.REMINDER: "Reminder",
    }[kind]
