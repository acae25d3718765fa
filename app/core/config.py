from pydantic_settings import BaseSettings
from typing import Optional, List, Dict

class Settings(BaseSettings):
    PROJECT_NAME: str = "CareCalendar"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    AUTH_TOKEN_URL: Optional[str] = None

    REMOTE_API_URL: str = "http://localhost:8000/api"
    REMOTE_API_KEY: Optional[str] = None
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_NOTIFICATIONS: bool = False
    REALTIME_ENABLED: bool = False
    POLL_INTERVAL_SECONDS: float = 30.0
    SESSION_IDLE_SECONDS: float = 900.0

    DEFAULT_DURATION_MINUTES: int = 30
    SLOT_MINUTES: int = 60
    WORKING_HOURS: List[Dict[str, int]] = [
        {"start": 9, "end": 12},
        {"start": 14, "end": 17},
    ]

    class Config:
        case_sensitive = True
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.AUTH_TOKEN_URL:
            self.AUTH_TOKEN_URL = f"{self.REMOTE_API_URL.rstrip('/')}/auth/login"

settings = Settings()
