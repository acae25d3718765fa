from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import SchedulingError, SlotConflictError
from app.core.logger import logger
from app.core.redis import redis_client
from app.middleware.log_middleware import LogMiddleware
from app.schemas.auth import CalendarScope
from app.services.appointment_repository import AppointmentRepository, build_remote_client
from app.services.calendar_session import SessionRegistry
from app.services.notification_service import LoggingNotificationSink, RedisNotificationSink
from app.services.update_source import PollingUpdateSource, RedisChangeListener

def notifier_for(scope: CalendarScope):
    if settings.REDIS_NOTIFICATIONS:
        return RedisNotificationSink(redis_client, scope.owner_id)
    return LoggingNotificationSink()

@asynccontextmanager
async def lifespan(app: FastAPI):
    client = build_remote_client()
    registry = SessionRegistry(AppointmentRepository(client), notifier_for)
    app.state.registry = registry

    poller = PollingUpdateSource(registry) if settings.POLL_INTERVAL_SECONDS > 0 else None
    listener = RedisChangeListener(registry, redis_client) if settings.REALTIME_ENABLED else None
    if poller:
        poller.start()
    if listener:
        listener.start()
    logger.info("%s started against %s", settings.PROJECT_NAME, settings.REMOTE_API_URL)

    yield

    if poller:
        await poller.stop()
    if listener:
        await listener.stop()
    await client.aclose()
    await redis_client.close()

async def scheduling_error_handler(request: Request, exc: SchedulingError):
    content = {"detail": exc.detail}
    if isinstance(exc, SlotConflictError):
        content["conflicting_ids"] = exc.conflicting_ids
    return JSONResponse(status_code=exc.status_code, content=content)

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LogMiddleware)
    app.add_exception_handler(SchedulingError, scheduling_error_handler)

    @app.get("/")
    async def root():
        return {"message": "Welcome to CareCalendar API"}

    from app.api.api import api_router
    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app

app = create_app()
