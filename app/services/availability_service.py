from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, List, Optional, Sequence

from app.core.config import settings
from app.schemas.appointment import Appointment
from app.schemas.interval import Interval
from app.schemas.schedule import DailySlots, OpenSlot, WeeklySlotsResponse, WorkingHours

def default_working_hours() -> List[WorkingHours]:
    return [WorkingHours(**window) for window in settings.WORKING_HOURS]

class AvailabilityService:
    """Pure slot arithmetic over a snapshot of appointments.

    Nothing here does I/O or caches: every call is computed from the
    ``existing`` appointments passed in, so callers hand over a fresh
    reconciler snapshot each time.
    """

    def __init__(self, slot_minutes: Optional[int] = None):
        self.slot_minutes = slot_minutes or settings.SLOT_MINUTES

    def find_conflicts(
        self,
        doctor_id: str,
        candidate: Interval,
        existing: Iterable[Appointment],
        exclude_id: Optional[str] = None,
    ) -> List[Appointment]:
        return [
            appointment
            for appointment in existing
            if appointment.doctor_id == doctor_id
            and appointment.id != exclude_id
            and appointment.is_booked
            and candidate.overlaps(appointment.interval)
        ]

    def is_slot_available(
        self,
        doctor_id: str,
        candidate: Interval,
        existing: Iterable[Appointment],
        exclude_id: Optional[str] = None,
    ) -> bool:
        return not self.find_conflicts(doctor_id, candidate, existing, exclude_id)

    def blocked_intervals(self, doctor_id: str, existing: Iterable[Appointment]) -> List[Interval]:
        """Intervals the doctor marked unavailable (breaks, leave), in start order."""
        return sorted(
            (a.interval for a in existing if a.doctor_id == doctor_id and a.is_blocked_time),
            key=lambda interval: interval.start,
        )

    def iter_open_slots(
        self,
        doctor_id: str,
        day: date,
        working_hours: Optional[Sequence[WorkingHours]] = None,
        existing: Iterable[Appointment] = (),
        slot_minutes: Optional[int] = None,
    ) -> Iterator[Interval]:
        """Yield free fixed-size slots for ``day`` in chronological order.

        The grid starts at each window's opening hour. A slot that would run
        past the window end, or that touches a booked interval anywhere, is
        skipped whole.
        """
        size = timedelta(minutes=slot_minutes or self.slot_minutes)
        if working_hours is None:
            working_hours = default_working_hours()
        windows = sorted(working_hours, key=lambda w: (w.start, w.end))
        booked = [a for a in existing if a.doctor_id == doctor_id and a.is_booked]

        emitted = set()
        for window in windows:
            bounds = Interval.from_hours(day, window.start, window.end)
            cursor = bounds.start
            while cursor + size <= bounds.end:
                candidate = Interval(start=cursor, end=cursor + size)
                cursor += size
                if candidate.start in emitted:
                    continue
                if self.is_slot_available(doctor_id, candidate, booked):
                    emitted.add(candidate.start)
                    yield candidate

    def list_open_slots(
        self,
        doctor_id: str,
        day: date,
        working_hours: Optional[Sequence[WorkingHours]] = None,
        existing: Iterable[Appointment] = (),
        slot_minutes: Optional[int] = None,
    ) -> List[Interval]:
        existing = list(existing)
        slots = list(self.iter_open_slots(doctor_id, day, working_hours, existing, slot_minutes))
        # Windows may overlap; keep the output chronological regardless
        return sorted(slots, key=lambda interval: interval.start)

    def weekly_open_slots(
        self,
        doctor_id: str,
        start_day: date,
        working_hours: Optional[Sequence[WorkingHours]] = None,
        existing: Iterable[Appointment] = (),
        days: int = 7,
    ) -> WeeklySlotsResponse:
        existing = list(existing)
        daily_slots_list = []

        for i in range(days):
            current_date = start_day + timedelta(days=i)
            slots = [
                OpenSlot(start_time=slot.start, end_time=slot.end)
                for slot in self.list_open_slots(doctor_id, current_date, working_hours, existing)
            ]
            daily_slots_list.append(DailySlots(date=current_date.isoformat(), slots=slots))

        return WeeklySlotsResponse(
            doctor_id=doctor_id,
            start_date=start_day.isoformat(),
            end_date=(start_day + timedelta(days=days - 1)).isoformat(),
            daily_slots=daily_slots_list,
        )

def day_bounds(day: date) -> Interval:
    start = datetime.combine(day, datetime.min.time())
    return Interval(start=start, end=start + timedelta(days=1))
