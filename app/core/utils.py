import secrets
import time
from datetime import datetime

TEMP_ID_PREFIX = "temp-"

def generate_temp_id() -> str:
    # Millisecond stamp plus a random suffix: two clicks in the same ms still differ
    stamp = int(time.time() * 1000)
    return f"{TEMP_ID_PREFIX}{stamp}-{secrets.token_hex(3)}"

def is_temp_id(appointment_id: str) -> bool:
    return appointment_id.startswith(TEMP_ID_PREFIX)

def to_local_naive(value: datetime) -> datetime:
    """Calendar times are naive local time; aware values are converted first."""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value
