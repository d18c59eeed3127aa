"""
Calendar Pydantic Models
Request/response schemas for calendar endpoints
"""

import uuid
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from lms_backend.services.calendar.models import (
    AttendeeStatus,
    EventDetails,
    MutationResult,
)
from lms_backend.services.calendar_sync import (
    CalendarProvider,
    IntegrationDetails,
    IntegrationSetup,
    SyncDirection,
    SyncResult,
)


class EventResponse(BaseModel):
    """One event plus non-fatal warnings from companion services"""
    event: EventDetails
    warnings: List[str] = Field(default_factory=list)


class SeriesResponse(BaseModel):
    """Every occurrence of a series, ordered by start time"""
    events: List[EventDetails]
    warnings: List[str] = Field(default_factory=list)


class EventListResponse(BaseModel):
    total: int
    results: List[EventDetails]


class MutationResponse(MutationResult):
    """Create/update/delete outcome"""
    message: str


class AddAttendeesRequest(BaseModel):
    user_ids: List[uuid.UUID] = Field(..., min_length=1)


class RsvpRequest(BaseModel):
    status: AttendeeStatus


class AttendanceRequest(BaseModel):
    user_id: uuid.UUID
    joined: bool = True


class SetupSyncRequest(IntegrationSetup):
    action: Literal["setup"]


class RunSyncRequest(BaseModel):
    action: Literal["sync"]
    provider: CalendarProvider
    direction: Optional[SyncDirection] = None


CalendarSyncRequest = Annotated[
    Union[SetupSyncRequest, RunSyncRequest], Field(discriminator="action")
]


class CalendarSyncResponse(BaseModel):
    """Outcome of a setup or sync action"""
    success: bool = True
    message: str
    integration: Optional[IntegrationDetails] = None
    result: Optional[SyncResult] = None


class IntegrationListResponse(BaseModel):
    integrations: List[IntegrationDetails]
