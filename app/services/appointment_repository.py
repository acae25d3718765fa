"""
Adapter between the Appointment model and the remote persistence API.

The adapter is stateless: it holds an ``httpx.AsyncClient`` and nothing else,
never caches, and never retries. Each operation maps transport and HTTP
failures onto the scheduling error taxonomy so the orchestrator can decide
what to roll back.
"""
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import (
    InvalidIntervalError,
    InvalidTransitionError,
    NotFoundError,
    RemoteReadError,
    RemoteWriteError,
)
from app.core.logger import get_logger
from app.core.utils import to_local_naive
from app.schemas.appointment import (
    DECIDABLE_STATUSES,
    Appointment,
    AppointmentCreate,
    AppointmentKind,
    AppointmentStatus,
)
from app.schemas.interval import Interval

logger = get_logger("repository")

# Statuses older backend rows may still carry
STATUS_ALIASES = {
    "approved": AppointmentStatus.CONFIRMED,
    "scheduled_no_consent": AppointmentStatus.SCHEDULED,
}

UPDATABLE_FIELDS = {"title", "interval", "kind", "status", "patient_id", "notes"}


def interval_to_wire(interval: Interval) -> Dict[str, Any]:
    return {
        "start_date": interval.start.date().isoformat(),
        "start_time": interval.start.time().isoformat(timespec="seconds"),
        "duration_minutes": interval.duration_minutes,
        "end_time": interval.end.time().isoformat(timespec="seconds"),
    }


def interval_from_wire(record: Dict[str, Any]) -> Interval:
    start = datetime.combine(
        date.fromisoformat(record["start_date"]),
        time.fromisoformat(record["start_time"]),
    )
    end_time = record.get("end_time")
    if end_time:
        end = datetime.combine(start.date(), time.fromisoformat(end_time))
        # An end at or before the start means the slot runs past midnight
        if end <= start:
            end += timedelta(days=1)
        return Interval(start=start, end=end)
    duration = record.get("duration_minutes") or settings.DEFAULT_DURATION_MINUTES
    return Interval(start=start, end=start + timedelta(minutes=int(duration)))


def normalize_status(raw: Optional[str]) -> AppointmentStatus:
    if raw in STATUS_ALIASES:
        return STATUS_ALIASES[raw]
    try:
        return AppointmentStatus(raw)
    except ValueError:
        logger.warning("Unknown appointment status %r from backend, treating as pending", raw)
        return AppointmentStatus.PENDING


def appointment_from_wire(record: Dict[str, Any]) -> Appointment:
    updated_at = record.get("updated_at")
    return Appointment(
        id=str(record["id"]),
        title=record.get("title") or "",
        interval=interval_from_wire(record),
        kind=AppointmentKind(record.get("kind") or AppointmentKind.CONSULTATION.value),
        status=normalize_status(record.get("status")),
        doctor_id=_optional_str(record.get("doctor_id")),
        patient_id=_optional_str(record.get("patient_id")),
        notes=record.get("notes"),
        updated_at=to_local_naive(datetime.fromisoformat(updated_at)) if updated_at else None,
    )


def fields_to_wire(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated remotely: {sorted(unknown)}")
    payload: Dict[str, Any] = {}
    for key, value in fields.items():
        if key == "interval":
            payload.update(interval_to_wire(value))
        elif key in ("kind", "status"):
            payload[key] = value.value if hasattr(value, "value") else value
        else:
            payload[key] = value
    return payload


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class AppointmentRepository:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def create(self, data: AppointmentCreate) -> Appointment:
        payload = fields_to_wire({
            "title": data.title,
            "interval": data.interval,
            "kind": data.kind,
            "status": data.status,
            "patient_id": data.patient_id,
            "notes": data.notes,
        })
        payload["doctor_id"] = data.doctor_id
        response = await self._send("POST", "/appointments", RemoteWriteError, json=payload)
        if response.is_error:
            raise RemoteWriteError(self._describe("create", response))
        appointment = self._parse(response, RemoteWriteError)
        logger.info("Created appointment %s for doctor %s", appointment.id, appointment.doctor_id)
        return appointment

    async def update(self, appointment_id: str, fields: Dict[str, Any]) -> Appointment:
        payload = fields_to_wire(fields)
        response = await self._send(
            "PATCH", f"/appointments/{appointment_id}", RemoteWriteError, json=payload
        )
        if response.status_code == 404:
            raise NotFoundError(f"Appointment {appointment_id} no longer exists")
        if response.status_code == 409:
            raise InvalidTransitionError(self._describe("update", response))
        if response.is_error:
            raise RemoteWriteError(self._describe("update", response))
        return self._parse(response, RemoteWriteError)

    async def delete(self, appointment_id: str) -> None:
        response = await self._send("DELETE", f"/appointments/{appointment_id}", RemoteWriteError)
        if response.status_code == 404:
            # Already gone: double submission or a stale id, nothing left to do
            logger.info("Appointment %s already deleted remotely", appointment_id)
            return
        if response.is_error:
            raise RemoteWriteError(self._describe("delete", response))

    async def get(self, appointment_id: str) -> Appointment:
        response = await self._send("GET", f"/appointments/{appointment_id}", RemoteReadError)
        if response.status_code == 404:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        if response.is_error:
            raise RemoteReadError(self._describe("get", response))
        return self._parse(response, RemoteReadError)

    async def list(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[Appointment]:
        if (doctor_id is None) == (patient_id is None):
            raise ValueError("list() needs exactly one of doctor_id or patient_id")
        params: Dict[str, str] = {}
        if doctor_id is not None:
            params["doctor_id"] = doctor_id
        else:
            params["patient_id"] = patient_id
        if date_from:
            params["date_from"] = date_from.isoformat()
        if date_to:
            params["date_to"] = date_to.isoformat()

        response = await self._send("GET", "/appointments", RemoteReadError, params=params)
        if response.is_error:
            raise RemoteReadError(self._describe("list", response))
        try:
            records = response.json()
            return sorted(
                (appointment_from_wire(record) for record in records),
                key=lambda a: a.start,
            )
        except (ValueError, KeyError, TypeError, InvalidIntervalError) as exc:
            raise RemoteReadError(f"Malformed appointment list: {exc}") from exc

    async def approve(self, appointment_id: str) -> Appointment:
        return await self._transition(appointment_id, AppointmentStatus.CONFIRMED, "approve")

    async def reject(self, appointment_id: str) -> Appointment:
        return await self._transition(appointment_id, AppointmentStatus.REJECTED, "reject")

    async def _transition(
        self, appointment_id: str, target: AppointmentStatus, action: str
    ) -> Appointment:
        try:
            current = await self.get(appointment_id)
        except RemoteReadError as exc:
            raise RemoteWriteError(f"Could not {action} appointment: {exc.detail}") from exc

        if current.status not in DECIDABLE_STATUSES:
            raise InvalidTransitionError(
                f"Cannot {action} appointment {appointment_id} in status {current.status.value}"
            )
        return await self.update(appointment_id, {"status": target})

    async def _send(self, method: str, url: str, error_cls, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise error_cls(f"Remote API unreachable: {exc}") from exc

    def _parse(self, response: httpx.Response, error_cls) -> Appointment:
        try:
            return appointment_from_wire(response.json())
        except (ValueError, KeyError, TypeError, InvalidIntervalError) as exc:
            raise error_cls(f"Malformed appointment payload: {exc}") from exc

    @staticmethod
    def _describe(action: str, response: httpx.Response) -> str:
        try:
            detail = response.json().get("detail")
        except (ValueError, AttributeError):
            detail = None
        return f"Remote {action} failed with {response.status_code}" + (f": {detail}" if detail else "")


def build_remote_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    headers = {}
    if settings.REMOTE_API_KEY:
        headers["Authorization"] = f"Bearer {settings.REMOTE_API_KEY}"
    return httpx.AsyncClient(
        base_url=settings.REMOTE_API_URL,
        headers=headers,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
        transport=transport,
    )
