from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.api.deps import get_current_actor, get_doctor_session, require_calendar_owner
from app.core.exceptions import NotFoundError
from app.core.utils import to_local_naive
from app.schemas.appointment import (
    Appointment,
    AppointmentKind,
    AppointmentResponse,
    AppointmentUpdateRequest,
    CalendarResponse,
    MoveRequest,
    ResizeRequest,
    ScheduleRequest,
    SyncState,
)
from app.schemas.auth import Actor, Role
from app.schemas.interval import Interval
from app.services.calendar_session import CalendarSession

router = APIRouter()

def construct_response(appointment: Appointment, session: CalendarSession) -> AppointmentResponse:
    sync_state = session.reconciler.sync_state(appointment.id) or SyncState.CONFIRMED
    return AppointmentResponse(
        id=appointment.id,
        title=appointment.title,
        start=appointment.start,
        end=appointment.end,
        duration_minutes=appointment.interval.duration_minutes,
        kind=appointment.kind,
        status=appointment.status,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        notes=appointment.notes,
        sync_state=sync_state,
    )

def construct_calendar(session: CalendarSession) -> CalendarResponse:
    return CalendarResponse(
        owner_id=session.scope.owner_id,
        appointments=[construct_response(a, session) for a in session.appointments()],
    )

def requested_interval(request: ScheduleRequest) -> Interval:
    start = to_local_naive(request.start)
    if request.end is not None:
        return Interval(start=start, end=request.end)
    return Interval.from_slot(start.date(), start.time(), request.duration_minutes)

def current_appointment(session: CalendarSession, appointment_id: str) -> Appointment:
    appointment = session.reconciler.get(appointment_id)
    if appointment is None:
        raise NotFoundError(f"Appointment {appointment_id} is not on this calendar")
    return appointment

@router.get("", response_model=CalendarResponse)
async def read_calendar(
    refresh: bool = False,
    actor: Actor = Depends(require_calendar_owner),
    session: CalendarSession = Depends(get_doctor_session),
):
    if refresh:
        await session.refresh()
    return construct_calendar(session)

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    doctor_id: str,
    request: ScheduleRequest,
    actor: Actor = Depends(get_current_actor),
    session: CalendarSession = Depends(get_doctor_session),
):
    interval = requested_interval(request)

    if actor.role == Role.PATIENT:
        # Patients can only ask for a consultation for themselves
        if request.kind != AppointmentKind.CONSULTATION:
            raise HTTPException(status_code=403, detail="Patients can only request consultations")
        appointment = await session.scheduler.request_consultation(
            doctor_id,
            actor.id,
            interval,
            notes=request.notes,
            title=request.title or "Consultation Request",
        )
    else:
        if actor.id != doctor_id:
            raise HTTPException(status_code=403, detail="Doctors can only book on their own calendar")
        appointment = await session.scheduler.schedule(
            doctor_id,
            interval,
            kind=request.kind,
            patient_id=request.patient_id,
            notes=request.notes,
            title=request.title,
        )
    return construct_response(appointment, session)

@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: str,
    request: AppointmentUpdateRequest,
    actor: Actor = Depends(require_calendar_owner),
    session: CalendarSession = Depends(get_doctor_session),
):
    current = current_appointment(session, appointment_id)
    appointment = current

    if request.start is not None or request.end is not None:
        start = request.start or current.start
        end = request.end or start + timedelta(minutes=current.interval.duration_minutes)
        appointment = await session.scheduler.reschedule(current.id, Interval(start=start, end=end))

    if request.title is not None or request.notes is not None:
        appointment = await session.scheduler.update_details(
            current.id, title=request.title, notes=request.notes
        )
    return construct_response(appointment, session)

@router.post("/{appointment_id}/move", response_model=AppointmentResponse)
async def move_appointment(
    appointment_id: str,
    request: MoveRequest,
    actor: Actor = Depends(require_calendar_owner),
    session: CalendarSession = Depends(get_doctor_session),
):
    current = current_appointment(session, appointment_id)
    duration = timedelta(minutes=current.interval.duration_minutes)
    appointment = await session.scheduler.move(
        current.id, Interval(start=request.start, end=request.start + duration)
    )
    return construct_response(appointment, session)

@router.post("/{appointment_id}/resize", response_model=AppointmentResponse)
async def resize_appointment(
    appointment_id: str,
    request: ResizeRequest,
    actor: Actor = Depends(require_calendar_owner),
    session: CalendarSession = Depends(get_doctor_session),
):
    appointment = await session.scheduler.resize(appointment_id, request.end)
    return construct_response(appointment, session)

@router.post("/{appointment_id}/approve", response_model=AppointmentResponse)
async def approve_appointment(
    appointment_id: str,
    actor: Actor = Depends(require_calendar_owner),
    session: CalendarSession = Depends(get_doctor_session),
):
    appointment = await session.scheduler.approve(appointment_id)
    return construct_response(appointment, session)

@router.post("/{appointment_id}/reject", response_model=AppointmentResponse)
async def reject_appointment(
    appointment_id: str,
    actor: Actor = Depends(require_calendar_owner),
    session: CalendarSession = Depends(get_doctor_session),
):
    appointment = await session.scheduler.reject(appointment_id)
    return construct_response(appointment, session)

@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_id: str,
    actor: Actor = Depends(require_calendar_owner),
    session: CalendarSession = Depends(get_doctor_session),
):
    current = current_appointment(session, appointment_id)
    await session.scheduler.delete(current.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
