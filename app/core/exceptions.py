"""
Error taxonomy for the scheduling core.

Every error carries the HTTP status the API layer answers with, so routes
never translate errors one by one. Local validation errors (interval, slot
conflict, missing participant) are raised before any remote call; the remote
errors come out of the repository adapter.
"""


class SchedulingError(Exception):
    status_code = 400
    default_detail = "Scheduling request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidIntervalError(SchedulingError):
    status_code = 422
    default_detail = "Interval end must be after its start"


class SlotConflictError(SchedulingError):
    status_code = 409
    default_detail = "Slot conflict"

    def __init__(self, detail: str | None = None, conflicting_ids: list[str] | None = None):
        super().__init__(detail)
        self.conflicting_ids = conflicting_ids or []


class MissingPatientError(SchedulingError):
    status_code = 422
    default_detail = "A patient is required for this appointment kind"


class MissingDoctorError(SchedulingError):
    status_code = 422
    default_detail = "A doctor is required for this appointment kind"


class RemoteError(SchedulingError):
    """Failure reported by, or while talking to, the remote persistence API."""


class RemoteReadError(RemoteError):
    status_code = 503
    default_detail = "Could not load appointments"


class RemoteWriteError(RemoteError):
    status_code = 502
    default_detail = "Could not save appointment"


class NotFoundError(RemoteError):
    status_code = 404
    default_detail = "Appointment not found"


class InvalidTransitionError(RemoteError):
    status_code = 409
    default_detail = "Appointment status does not allow this change"
