from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import List

class WorkingHours(BaseModel):
    """A working-hour window in whole hours of the day, e.g. 9 to 12."""
    start: int = Field(ge=0, le=23)
    end: int = Field(ge=1, le=24)

    @model_validator(mode="after")
    def _check_order(self) -> "WorkingHours":
        if self.end <= self.start:
            raise ValueError("Working hours must end after they start")
        return self

class OpenSlot(BaseModel):
    start_time: datetime
    end_time: datetime

class DailySlots(BaseModel):
    date: str
    slots: List[OpenSlot]

class WeeklySlotsResponse(BaseModel):
    doctor_id: str
    start_date: str
    end_date: str
    daily_slots: List[DailySlots]

class DaySlotsResponse(BaseModel):
    doctor_id: str
    date: str
    slot_minutes: int
    slots: List[OpenSlot]
    blocked: List[OpenSlot] = []
