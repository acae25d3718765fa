from datetime import date, datetime, time, timedelta

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from app.core.config import settings
from app.core.exceptions import InvalidIntervalError
from app.core.utils import to_local_naive


class Interval(BaseModel):
    """A half-open time range ``[start, end)`` in naive local time.

    Back-to-back intervals (one ending exactly when the next starts) do not
    overlap. Instances are immutable; ``shift``/``with_duration``/``with_end``
    return new intervals.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _naive_local(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    @model_validator(mode="after")
    def _check_order(self) -> "Interval":
        # InvalidIntervalError is not a ValueError, so pydantic lets it propagate as-is
        if self.end <= self.start:
            raise InvalidIntervalError(
                f"Interval end {self.end.isoformat()} is not after start {self.start.isoformat()}"
            )
        return self

    @classmethod
    def from_slot(
        cls,
        day: date,
        time_of_day: time,
        duration_minutes: int | None = None,
    ) -> "Interval":
        """Build an interval from a date, a time of day and a duration in whole minutes."""
        if duration_minutes is None:
            duration_minutes = settings.DEFAULT_DURATION_MINUTES
        if duration_minutes <= 0:
            raise InvalidIntervalError(f"Duration must be positive, got {duration_minutes} minutes")
        start = datetime.combine(day, time_of_day)
        return cls(start=start, end=start + timedelta(minutes=duration_minutes))

    @classmethod
    def from_hours(cls, day: date, start_hour: int, end_hour: int) -> "Interval":
        midnight = datetime.combine(day, time.min)
        return cls(
            start=midnight + timedelta(hours=start_hour),
            end=midnight + timedelta(hours=end_hour),
        )

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def shift(self, delta_minutes: int) -> "Interval":
        delta = timedelta(minutes=delta_minutes)
        return Interval(start=self.start + delta, end=self.end + delta)

    def with_duration(self, minutes: int) -> "Interval":
        if minutes <= 0:
            raise InvalidIntervalError(f"Duration must be positive, got {minutes} minutes")
        return Interval(start=self.start, end=self.start + timedelta(minutes=minutes))

    def with_end(self, end: datetime) -> "Interval":
        return Interval(start=self.start, end=end)

    def __str__(self) -> str:
        return f"[{self.start:%Y-%m-%d %H:%M}, {self.end:%H:%M})"
