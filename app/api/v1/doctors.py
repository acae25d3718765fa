from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_current_actor, get_doctor_session
from app.schemas.auth import Actor
from app.schemas.schedule import DaySlotsResponse, OpenSlot, WeeklySlotsResponse
from app.services.calendar_session import CalendarSession

router = APIRouter()

def parse_day(value: str):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")

@router.get("/{doctor_id}/slots", response_model=DaySlotsResponse)
async def get_doctor_slots(
    doctor_id: str,
    date: str,  # YYYY-MM-DD
    actor: Actor = Depends(get_current_actor),
    session: CalendarSession = Depends(get_doctor_session),
):
    query_date = parse_day(date)
    slots = session.open_slots(doctor_id, query_date)
    blocked = session.blocked(doctor_id, query_date)

    return DaySlotsResponse(
        doctor_id=doctor_id,
        date=date,
        slot_minutes=session.availability.slot_minutes,
        slots=[OpenSlot(start_time=s.start, end_time=s.end) for s in slots],
        blocked=[OpenSlot(start_time=b.start, end_time=b.end) for b in blocked],
    )

@router.get("/{doctor_id}/slots/week", response_model=WeeklySlotsResponse)
async def get_doctor_week(
    doctor_id: str,
    start_date: str,  # YYYY-MM-DD
    actor: Actor = Depends(get_current_actor),
    session: CalendarSession = Depends(get_doctor_session),
):
    return session.weekly_slots(doctor_id, parse_day(start_date))
