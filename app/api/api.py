from fastapi import APIRouter
from app.api.v1 import appointments, doctors, patients

api_router = APIRouter()

api_router.include_router(doctors.router, prefix="/doctors", tags=["slots"])
api_router.include_router(appointments.router, prefix="/doctors/{doctor_id}/appointments", tags=["appointments"])
api_router.include_router(patients.router, prefix="/patients", tags=["patients"])
