from datetime import datetime, timezone

import pytest

from app.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    RemoteReadError,
    RemoteWriteError,
)
from app.schemas.appointment import AppointmentCreate, AppointmentKind, AppointmentStatus
from app.services.appointment_repository import (
    appointment_from_wire,
    fields_to_wire,
    interval_from_wire,
    interval_to_wire,
    normalize_status,
)

from conftest import at, slot, wire_record


class TestWireFormat:
    def test_interval_to_wire(self):
        assert interval_to_wire(slot(9, 10)) == {
            "start_date": "2024-03-04",
            "start_time": "09:00:00",
            "duration_minutes": 60,
            "end_time": "10:00:00",
        }

    def test_end_time_wins_over_duration(self):
        record = {"start_date": "2024-03-04", "start_time": "09:00", "duration_minutes": 15, "end_time": "10:00"}
        assert interval_from_wire(record) == slot(9, 10)

    def test_duration_used_without_end_time(self):
        record = {"start_date": "2024-03-04", "start_time": "09:00:00", "duration_minutes": 45}
        assert interval_from_wire(record).end == at(9, 45)

    def test_default_duration_when_both_missing(self):
        record = {"start_date": "2024-03-04", "start_time": "09:00:00"}
        assert interval_from_wire(record).duration_minutes == 30

    def test_end_before_start_rolls_to_next_day(self):
        record = {"start_date": "2024-03-04", "start_time": "23:30:00", "end_time": "00:30:00"}
        assert interval_from_wire(record).end == datetime(2024, 3, 5, 0, 30)

    @pytest.mark.parametrize("raw, expected", [
        ("approved", AppointmentStatus.CONFIRMED),
        ("scheduled_no_consent", AppointmentStatus.SCHEDULED),
        ("pending", AppointmentStatus.PENDING),
        ("cancelled", AppointmentStatus.CANCELLED),
        ("mystery", AppointmentStatus.PENDING),
        (None, AppointmentStatus.PENDING),
    ])
    def test_normalize_status(self, raw, expected):
        assert normalize_status(raw) == expected

    def test_appointment_from_wire(self):
        record = wire_record(42, at(9), updated_at="2024-03-01T08:00:00+00:00", patient_id=7)
        appointment = appointment_from_wire(record)
        assert appointment.id == "42"
        assert appointment.patient_id == "7"
        assert appointment.interval.duration_minutes == 30
        assert appointment.updated_at.tzinfo is None
        assert appointment.updated_at == (
            datetime(2024, 3, 1, 8, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        )

    def test_fields_to_wire_rejects_unknown_fields(self):
        with pytest.raises(ValueError):
            fields_to_wire({"doctor_id": "d2"})

    def test_fields_to_wire_flattens_interval_and_enums(self):
        payload = fields_to_wire({"interval": slot(9, 10), "status": AppointmentStatus.CONFIRMED})
        assert payload["start_time"] == "09:00:00"
        assert payload["status"] == "confirmed"


class TestRepositoryOperations:
    @pytest.mark.asyncio
    async def test_create_returns_backend_id(self, repository, backend):
        data = AppointmentCreate(
            title="Checkup",
            interval=slot(9, 10),
            kind=AppointmentKind.CONSULTATION,
            status=AppointmentStatus.SCHEDULED,
            doctor_id="d1",
            patient_id="p1",
        )
        created = await repository.create(data)
        assert created.id == "100"
        assert created.interval == slot(9, 10)
        assert backend.records["100"]["doctor_id"] == "d1"
        assert backend.records["100"]["start_date"] == "2024-03-04"

    @pytest.mark.asyncio
    async def test_create_failure_is_write_error(self, repository, backend):
        backend.fail("POST", 500)
        data = AppointmentCreate(
            interval=slot(9, 10), kind=AppointmentKind.MEETING,
            status=AppointmentStatus.CONFIRMED, doctor_id="d1",
        )
        with pytest.raises(RemoteWriteError) as exc_info:
            await repository.create(data)
        assert "backend exploded" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_unreachable_backend(self, repository, backend):
        backend.unreachable = True
        with pytest.raises(RemoteReadError):
            await repository.list(doctor_id="d1")
        with pytest.raises(RemoteWriteError):
            await repository.delete("1")

    @pytest.mark.asyncio
    async def test_update(self, repository, backend):
        backend.add(wire_record("1", at(9)))
        updated = await repository.update("1", {"interval": slot(11, 12), "notes": "moved"})
        assert updated.interval == slot(11, 12)
        assert updated.notes == "moved"

    @pytest.mark.asyncio
    async def test_update_missing_is_not_found(self, repository):
        with pytest.raises(NotFoundError):
            await repository.update("404", {"notes": "x"})

    @pytest.mark.asyncio
    async def test_update_conflict_is_invalid_transition(self, repository, backend):
        backend.add(wire_record("1", at(9)))
        backend.fail("PATCH", 409, "locked")
        with pytest.raises(InvalidTransitionError):
            await repository.update("1", {"notes": "x"})

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, repository, backend):
        backend.add(wire_record("1", at(9)))
        await repository.delete("1")
        await repository.delete("1")
        assert "1" not in backend.records
        assert len(backend.remote_calls("DELETE")) == 2

    @pytest.mark.asyncio
    async def test_get(self, repository, backend):
        backend.add(wire_record("1", at(9)))
        assert (await repository.get("1")).start == at(9)
        with pytest.raises(NotFoundError):
            await repository.get("2")

    @pytest.mark.asyncio
    async def test_list_filters_and_sorts(self, repository, backend):
        backend.add(wire_record("late", at(15)))
        backend.add(wire_record("early", at(9)))
        backend.add(wire_record("other", at(10), doctor_id="d2"))
        appointments = await repository.list(doctor_id="d1")
        assert [a.id for a in appointments] == ["early", "late"]

        mine = await repository.list(patient_id="p1")
        assert len(mine) == 3

    @pytest.mark.asyncio
    async def test_list_needs_exactly_one_owner(self, repository):
        with pytest.raises(ValueError):
            await repository.list()
        with pytest.raises(ValueError):
            await repository.list(doctor_id="d1", patient_id="p1")

    @pytest.mark.asyncio
    async def test_list_malformed_payload_is_read_error(self, repository, backend):
        backend.add({"id": "broken", "doctor_id": "d1", "start_time": "09:00"})
        with pytest.raises(RemoteReadError):
            await repository.list(doctor_id="d1")

    @pytest.mark.asyncio
    async def test_approve_and_reject(self, repository, backend):
        backend.add(wire_record("1", at(9), status="pending"))
        backend.add(wire_record("2", at(10), status="scheduled"))
        approved = await repository.approve("1")
        rejected = await repository.reject("2")
        assert approved.status == AppointmentStatus.CONFIRMED
        assert rejected.status == AppointmentStatus.REJECTED

    @pytest.mark.asyncio
    async def test_approve_requires_decidable_status(self, repository, backend):
        backend.add(wire_record("1", at(9), status="cancelled"))
        with pytest.raises(InvalidTransitionError):
            await repository.approve("1")
        assert backend.remote_calls("PATCH") == []

    @pytest.mark.asyncio
    async def test_approve_missing(self, repository):
        with pytest.raises(NotFoundError):
            await repository.approve("nope")
