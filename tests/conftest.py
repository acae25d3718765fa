import itertools
import json
from datetime import date, datetime, time, timedelta

import httpx
import pytest

from app.schemas.appointment import Appointment, AppointmentKind, AppointmentStatus
from app.schemas.interval import Interval
from app.services.appointment_repository import AppointmentRepository, build_remote_client
from app.services.availability_service import AvailabilityService
from app.services.calendar_reconciler import CalendarReconciler
from app.services.scheduling_service import SchedulingService

DAY = date(2024, 3, 4)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


def slot(start_hour: int, end_hour: int, day: date = DAY) -> Interval:
    return Interval.from_hours(day, start_hour, end_hour)


def make_appointment(appointment_id: str, interval: Interval, **overrides) -> Appointment:
    fields = dict(
        id=appointment_id,
        title="Checkup",
        interval=interval,
        kind=AppointmentKind.CONSULTATION,
        status=AppointmentStatus.SCHEDULED,
        doctor_id="d1",
        patient_id="p1",
    )
    fields.update(overrides)
    return Appointment(**fields)


def wire_record(appointment_id: str, start: datetime, minutes: int = 30, **overrides) -> dict:
    end = start + timedelta(minutes=minutes)
    record = {
        "id": appointment_id,
        "title": "Checkup",
        "start_date": start.date().isoformat(),
        "start_time": start.time().isoformat(timespec="seconds"),
        "duration_minutes": minutes,
        "end_time": end.time().isoformat(timespec="seconds"),
        "kind": "consultation",
        "status": "scheduled",
        "doctor_id": "d1",
        "patient_id": "p1",
        "notes": None,
    }
    record.update(overrides)
    return record


class FakeAppointmentBackend:
    """In-memory stand-in for the remote appointments API, served through httpx.MockTransport."""

    def __init__(self):
        self.records = {}
        self.calls = []
        self.failures = {}
        self.unreachable = False
        self._ids = itertools.count(100)

    def fail(self, method: str, status_code: int = 500, detail: str = "backend exploded"):
        self.failures[method] = (status_code, detail)

    def add(self, record: dict) -> dict:
        self.records[str(record["id"])] = record
        return record

    def remote_calls(self, method: str = None):
        return [c for c in self.calls if method is None or c[0] == method]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if request.method in self.failures:
            status_code, detail = self.failures[request.method]
            return httpx.Response(status_code, json={"detail": detail})

        parts = request.url.path.rstrip("/").split("/")
        appointment_id = parts[-1] if parts[-1] != "appointments" else None

        if request.method == "GET" and appointment_id is None:
            params = request.url.params
            records = [
                r for r in self.records.values()
                if ("doctor_id" not in params or r.get("doctor_id") == params["doctor_id"])
                and ("patient_id" not in params or r.get("patient_id") == params["patient_id"])
            ]
            return httpx.Response(200, json=records)
        if request.method == "POST":
            record = json.loads(request.content)
            record["id"] = str(next(self._ids))
            self.records[record["id"]] = record
            return httpx.Response(201, json=record)

        record = self.records.get(appointment_id)
        if record is None:
            return httpx.Response(404, json={"detail": "Not found"})
        if request.method == "GET":
            return httpx.Response(200, json=record)
        if request.method == "PATCH":
            record.update(json.loads(request.content))
            return httpx.Response(200, json=record)
        if request.method == "DELETE":
            del self.records[appointment_id]
            return httpx.Response(204)
        return httpx.Response(405)


class RecordingNotificationSink:
    def __init__(self):
        self.sent = []

    async def send(self, notification) -> None:
        self.sent.append(notification)

    def titles(self):
        return [n.title for n in self.sent]


@pytest.fixture
def backend():
    return FakeAppointmentBackend()


@pytest.fixture
async def repository(backend):
    client = build_remote_client(transport=httpx.MockTransport(backend))
    yield AppointmentRepository(client)
    await client.aclose()


@pytest.fixture
def reconciler():
    return CalendarReconciler()


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def scheduler(repository, reconciler, notifier):
    return SchedulingService(repository, reconciler, AvailabilityService(slot_minutes=60), notifier)
