"""
Configuration Management
Loads settings from environment variables with type validation
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "LMS Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Security
    SECRET_KEY: str = Field(..., min_length=32)
    SESSION_DURATION_HOURS: int = Field(24, ge=1)
    SESSION_COOKIE_NAME: str = "session-token"
    SESSION_SIGNED_FALLBACK_ENABLED: bool = False

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "lms"
    POSTGRES_PASSWORD: str = "lms_password"
    POSTGRES_DB: str = "lms"
    DATABASE_URL: Optional[str] = None

    @property
    def POSTGRES_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Zoom (video-conference companion service)
    ZOOM_ACCOUNT_ID: Optional[str] = None
    ZOOM_CLIENT_ID: Optional[str] = None
    ZOOM_CLIENT_SECRET: Optional[str] = None
    ZOOM_API_BASE: str = "https://api.zoom.us/v2"
    ZOOM_OAUTH_URL: str = "https://zoom.us/oauth/token"
    ZOOM_TIMEOUT_SECONDS: float = Field(5.0, gt=0, le=30)
    ZOOM_WEBHOOK_SECRET_TOKEN: Optional[str] = None

    # External calendar sync (Google Calendar, Microsoft Graph)
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_CALENDAR_API_BASE: str = "https://www.googleapis.com/calendar/v3"
    GOOGLE_OAUTH_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    MICROSOFT_CLIENT_ID: Optional[str] = None
    MICROSOFT_CLIENT_SECRET: Optional[str] = None
    MICROSOFT_GRAPH_API_BASE: str = "https://graph.microsoft.com/v1.0"
    MICROSOFT_OAUTH_TOKEN_URL: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    CALENDAR_SYNC_TIMEOUT_SECONDS: float = Field(10.0, gt=0, le=60)
    CALENDAR_SYNC_PAST_MONTHS: int = Field(1, ge=0, le=12)
    CALENDAR_SYNC_FUTURE_MONTHS: int = Field(6, ge=1, le=24)

    # Calendar
    RECURRENCE_MAX_OCCURRENCES: int = Field(100, ge=1, le=100)
    RECURRENCE_MAX_INTERVAL: int = Field(30, ge=1, le=30)
    UPCOMING_EVENTS_DAYS: int = 7

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    @property
    def zoom_enabled(self) -> bool:
        return bool(self.ZOOM_ACCOUNT_ID and self.ZOOM_CLIENT_ID and self.ZOOM_CLIENT_SECRET)

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid = ["development", "staging", "production", "test"]
        if v not in valid:
            raise ValueError(f"ENVIRONMENT must be one of {valid}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}")
        return v_upper

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "allow"


# Global settings instance
settings = Settings()
