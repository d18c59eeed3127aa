"""
Calendar Sync Models
Pydantic models for external calendar integrations
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lms_backend.services.calendar.models import to_naive_utc
from lms_backend.services.calendar_sync.base import CalendarProvider, SyncDirection


class IntegrationSetup(BaseModel):
    """OAuth tokens obtained by the client for one provider"""

    provider: CalendarProvider
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    provider_user_id: Optional[str] = Field(default=None, max_length=255)
    calendar_id: Optional[str] = Field(default=None, max_length=255)
    sync_direction: SyncDirection = SyncDirection.BOTH

    normalize_times = field_validator("token_expiry")(to_naive_utc)


class IntegrationDetails(BaseModel):
    """Integration as shown to its owner; tokens are never returned"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider: CalendarProvider
    calendar_id: Optional[str] = None
    sync_enabled: bool
    sync_direction: SyncDirection
    sync_status: str
    last_sync_at: Optional[datetime] = None
    created_at: datetime


class SyncResult(BaseModel):
    """What one sync run did"""

    provider: CalendarProvider
    direction: SyncDirection
    imported: int = 0
    updated: int = 0
    exported: int = 0
    skipped: int = 0
