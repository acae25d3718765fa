from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.interval import Interval

class AppointmentKind(str, Enum):
    CONSULTATION = "consultation"
    BLOCKED = "blocked"
    FOLLOWUP = "followup"
    MEETING = "meeting"
    REMINDER = "reminder"

class AppointmentStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

class SyncState(str, Enum):
    LOCAL_PENDING = "local-pending"
    CONFIRMED = "confirmed"

BOOKED_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})
INACTIVE_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED})
DECIDABLE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.SCHEDULED})

PATIENT_REQUIRED_KINDS = frozenset({AppointmentKind.CONSULTATION, AppointmentKind.FOLLOWUP})
DOCTOR_REQUIRED_KINDS = frozenset({
    AppointmentKind.CONSULTATION,
    AppointmentKind.FOLLOWUP,
    AppointmentKind.BLOCKED,
    AppointmentKind.MEETING,
})

DEFAULT_STATUS_BY_KIND = {
    AppointmentKind.CONSULTATION: AppointmentStatus.SCHEDULED,
    AppointmentKind.FOLLOWUP: AppointmentStatus.SCHEDULED,
    AppointmentKind.BLOCKED: AppointmentStatus.CONFIRMED,
    AppointmentKind.MEETING: AppointmentStatus.CONFIRMED,
    AppointmentKind.REMINDER: AppointmentStatus.CONFIRMED,
}

class Appointment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    interval: Interval
    kind: AppointmentKind = AppointmentKind.CONSULTATION
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    doctor_id: Optional[str] = None
    patient_id: Optional[str] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end

    @property
    def is_booked(self) -> bool:
        return self.status in BOOKED_STATUSES

    @property
    def is_blocked_time(self) -> bool:
        return self.kind == AppointmentKind.BLOCKED and self.status not in INACTIVE_STATUSES

class AppointmentCreate(BaseModel):
    """Payload for a remote create; the backend assigns the id."""
    title: str = ""
    interval: Interval
    kind: AppointmentKind
    status: AppointmentStatus
    doctor_id: Optional[str] = None
    patient_id: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentCreate":
        return cls(**appointment.model_dump(include={
            "title", "interval", "kind", "status", "doctor_id", "patient_id", "notes",
        }))

# HTTP request bodies

class ScheduleRequest(BaseModel):
    start: datetime
    end: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    kind: AppointmentKind = AppointmentKind.CONSULTATION
    patient_id: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None

class AppointmentUpdateRequest(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    title: Optional[str] = None
    notes: Optional[str] = None

class MoveRequest(BaseModel):
    start: datetime

class ResizeRequest(BaseModel):
    end: datetime

class AppointmentResponse(BaseModel):
    id: str
    title: str
    start: datetime
    end: datetime
    duration_minutes: int
    kind: AppointmentKind
    status: AppointmentStatus
    doctor_id: Optional[str] = None
    patient_id: Optional[str] = None
    notes: Optional[str] = None
    sync_state: SyncState = SyncState.CONFIRMED

class CalendarResponse(BaseModel):
    owner_id: str
    appointments: List[AppointmentResponse]
