from enum import Enum

from pydantic import BaseModel, ConfigDict

class Role(str, Enum):
    DOCTOR = "doctor"
    PATIENT = "patient"

class Actor(BaseModel):
    """The signed-in user, as read from the bearer token."""
    id: str
    role: Role

class CalendarScope(BaseModel):
    """Whose calendar a session holds: one doctor's or one patient's."""
    model_config = ConfigDict(frozen=True)

    role: Role
    owner_id: str

    @property
    def list_filter(self) -> dict:
        if self.role == Role.DOCTOR:
            return {"doctor_id": self.owner_id}
        return {"patient_id": self.owner_id}
