from fastapi import APIRouter, Depends, Response, status

from app.api.deps import get_patient_session
from app.api.v1.appointments import construct_calendar, current_appointment
from app.schemas.appointment import CalendarResponse
from app.services.calendar_session import CalendarSession

router = APIRouter()

@router.get("/me/appointments", response_model=CalendarResponse)
async def read_my_appointments(
    refresh: bool = False,
    session: CalendarSession = Depends(get_patient_session),
):
    if refresh:
        await session.refresh()
    return construct_calendar(session)

@router.delete("/me/appointments/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_my_appointment(
    appointment_id: str,
    session: CalendarSession = Depends(get_patient_session),
):
    # Only appointments on the caller's own calendar can be cancelled
    current = current_appointment(session, appointment_id)
    await session.scheduler.cancel(current.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
