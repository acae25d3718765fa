from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import PyJWTError
from pydantic import ValidationError

from app.core.config import settings
from app.core.security import decode_access_token
from app.schemas.auth import Actor, CalendarScope, Role
from app.services.calendar_session import CalendarSession, SessionRegistry

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.AUTH_TOKEN_URL)

async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        actor_id = payload.get("sub")
        if actor_id is None:
            raise credentials_exception
        return Actor(id=str(actor_id), role=payload.get("role"))
    except (PyJWTError, ValidationError):
        raise credentials_exception

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry

async def get_doctor_session(
    doctor_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> CalendarSession:
    return await registry.get(CalendarScope(role=Role.DOCTOR, owner_id=doctor_id))

async def require_calendar_owner(
    doctor_id: str,
    actor: Actor = Depends(get_current_actor),
) -> Actor:
    if actor.role != Role.DOCTOR or actor.id != doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the doctor who owns this calendar can do that",
        )
    return actor

async def require_patient(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != Role.PATIENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patients only")
    return actor

async def get_patient_session(
    actor: Actor = Depends(require_patient),
    registry: SessionRegistry = Depends(get_registry),
) -> CalendarSession:
    return await registry.get(CalendarScope(role=Role.PATIENT, owner_id=actor.id))
