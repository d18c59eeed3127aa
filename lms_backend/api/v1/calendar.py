"""
Calendar API Routes
Events, recurring series, attendees, external calendar sync and the Zoom webhook
"""

import json
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.api.dependencies import (
    get_calendar_service,
    get_calendar_sync_service,
    get_current_session,
)
from lms_backend.core.config import settings
from lms_backend.core.exceptions import ValidationException
from lms_backend.core.logging import get_logger
from lms_backend.core.sessions import AuthSession
from lms_backend.db.session import get_db_session
from lms_backend.models.calendar import (
    AddAttendeesRequest,
    AttendanceRequest,
    CalendarSyncRequest,
    CalendarSyncResponse,
    EventListResponse,
    EventResponse,
    IntegrationListResponse,
    MutationResponse,
    RsvpRequest,
    SeriesResponse,
    SetupSyncRequest,
)
from lms_backend.services.calendar import (
    AttendeeDetails,
    CalendarService,
    EventChanges,
    EventCreate,
    EventFilters,
    EventStatus,
    EventType,
    MutationScope,
)
from lms_backend.services.calendar_sync import (
    CalendarProvider,
    CalendarSyncService,
    IntegrationSetup,
)
from lms_backend.services.video.webhook import (
    ZoomWebhookHandler,
    url_validation_response,
    verify_signature,
)

logger = get_logger(__name__)
router = APIRouter()


def _filters(
    start_date: Optional[datetime] = Query(None, description="Events ending at or after"),
    end_date: Optional[datetime] = Query(None, description="Events starting at or before"),
    course_id: Optional[uuid.UUID] = None,
    type: Optional[EventType] = None,
    status: Optional[EventStatus] = None,
    created_by_id: Optional[uuid.UUID] = None,
    attendee_id: Optional[uuid.UUID] = None,
) -> EventFilters:
    return EventFilters(
        start_date=start_date,
        end_date=end_date,
        course_id=course_id,
        type=type,
        status=status,
        created_by_id=created_by_id,
        attendee_id=attendee_id,
    )


# ============================================================================
# Events
# ============================================================================

@router.post("/events", response_model=EventResponse, status_code=201)
async def create_event(
    request: EventCreate,
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """
    Create an event

    With **recurrence** set, the event becomes the parent of a series and
    the remaining occurrences are created as well. Use **zoom_meeting** to
    attach a video meeting; a provider failure is returned as a warning.
    """
    result = await service.create_event(session.permissions, request)
    event = await service.get_event(session.permissions, result.affected_event_ids[0])
    return EventResponse(event=event, warnings=result.warnings)


@router.get("/events", response_model=EventListResponse)
async def list_events(
    filters: EventFilters = Depends(_filters),
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """List events the caller created or attends"""
    events = await service.list_events(session.permissions, filters)
    return EventListResponse(total=len(events), results=events)


@router.get("/events/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: uuid.UUID,
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Get one event (creator or attendee only)"""
    return EventResponse(event=await service.get_event(session.permissions, event_id))


@router.patch("/events/{event_id}", response_model=MutationResponse)
async def update_event(
    event_id: uuid.UUID,
    changes: EventChanges,
    scope: MutationScope = Query(MutationScope.SINGLE),
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """
    Update an event

    - **scope=single**: only this event
    - **scope=series**: every occurrence of its series
    - **scope=following**: this occurrence and every later one
    """
    result = await service.update_event(session.permissions, event_id, changes, scope)
    return MutationResponse(
        message=f"Updated {len(result.affected_event_ids)} event(s)", **result.model_dump()
    )


@router.delete("/events/{event_id}", response_model=MutationResponse)
async def delete_event(
    event_id: uuid.UUID,
    scope: MutationScope = Query(MutationScope.SINGLE),
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Delete an event, its series, or it and the following occurrences"""
    result = await service.delete_event(session.permissions, event_id, scope)
    return MutationResponse(
        message=f"Deleted {len(result.affected_event_ids)} event(s)", **result.model_dump()
    )


# ============================================================================
# Attendees
# ============================================================================

@router.post("/events/{event_id}/attendees", response_model=MutationResponse)
async def add_attendees(
    event_id: uuid.UUID,
    request: AddAttendeesRequest,
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Add attendees (creator only); nothing is added if any is a duplicate"""
    result = await service.add_attendees(session.permissions, event_id, request.user_ids)
    return MutationResponse(
        message=f"Added {len(request.user_ids)} attendee(s)", **result.model_dump()
    )


@router.put("/events/{event_id}/attendees", response_model=AttendeeDetails)
async def update_rsvp(
    event_id: uuid.UUID,
    request: RsvpRequest,
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Respond to an invitation"""
    return await service.update_rsvp(session.permissions, event_id, request.status)


@router.delete("/events/{event_id}/attendees", response_model=MutationResponse)
async def remove_attendee(
    event_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = Query(None, description="Defaults to the caller"),
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Remove an attendee; anyone may remove themselves"""
    result = await service.remove_attendee(
        session.permissions, event_id, user_id or session.user.id
    )
    return MutationResponse(message="Attendee removed", **result.model_dump())


@router.post("/events/{event_id}/attendance", response_model=AttendeeDetails)
async def mark_attendance(
    event_id: uuid.UUID,
    request: AttendanceRequest,
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Record that an attendee joined or left (creator only)"""
    return await service.mark_attendance(
        session.permissions, event_id, request.user_id, request.joined
    )


# ============================================================================
# Series, upcoming and search
# ============================================================================

@router.post("/recurring", response_model=SeriesResponse, status_code=201)
async def create_recurring_event(
    request: EventCreate,
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Create a recurring series; **recurrence** is required"""
    if request.recurrence is None:
        raise ValidationException(message="Recurrence rule is required")

    result = await service.create_event(session.permissions, request)
    events = await service.get_series(session.permissions, result.affected_event_ids[0])
    return SeriesResponse(events=events, warnings=result.warnings)


@router.get("/recurring", response_model=SeriesResponse)
async def get_series(
    event_id: uuid.UUID,
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Get the series that ``event_id`` belongs to"""
    return SeriesResponse(events=await service.get_series(session.permissions, event_id))


@router.get("/upcoming", response_model=EventListResponse)
async def upcoming_events(
    days: int = Query(settings.UPCOMING_EVENTS_DAYS, ge=1, le=365),
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Scheduled events in the next ``days`` days"""
    events = await service.upcoming_events(session.permissions, days)
    return EventListResponse(total=len(events), results=events)


@router.get("/search", response_model=EventListResponse)
async def search_events(
    q: str = Query(..., min_length=1, max_length=200),
    filters: EventFilters = Depends(_filters),
    session: AuthSession = Depends(get_current_session),
    service: CalendarService = Depends(get_calendar_service),
):
    """Search titles, descriptions and locations"""
    events = await service.search_events(session.permissions, q, filters)
    return EventListResponse(total=len(events), results=events)


# ============================================================================
# External calendar sync
# ============================================================================

@router.post("/sync", response_model=CalendarSyncResponse)
async def calendar_sync(
    request: CalendarSyncRequest,
    session: AuthSession = Depends(get_current_session),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
):
    """
    Connect or sync an external calendar

    - **action=setup**: store OAuth tokens for Google or Outlook
    - **action=sync**: import, export or both (integration default)
    """
    if isinstance(request, SetupSyncRequest):
        setup = IntegrationSetup.model_validate(request.model_dump(exclude={"action"}))
        integration = await service.setup_integration(session.permissions, setup)
        return CalendarSyncResponse(
            message=f"{setup.provider.value} calendar connected", integration=integration
        )

    result = await service.sync(session.permissions, request.provider, request.direction)
    return CalendarSyncResponse(
        message=f"{request.provider.value} calendar synced", result=result
    )


@router.get("/sync", response_model=IntegrationListResponse)
async def list_integrations(
    session: AuthSession = Depends(get_current_session),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
):
    """List the caller's connected calendars"""
    return IntegrationListResponse(
        integrations=await service.list_integrations(session.permissions)
    )


@router.delete("/sync", response_model=CalendarSyncResponse)
async def remove_integration(
    provider: CalendarProvider = Query(...),
    session: AuthSession = Depends(get_current_session),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
):
    """Disconnect an external calendar"""
    await service.remove_integration(session.permissions, provider)
    return CalendarSyncResponse(message=f"{provider.value} calendar disconnected")


# ============================================================================
# Zoom webhook
# ============================================================================

@router.post("/zoom/webhook")
async def zoom_webhook(request: Request, db: AsyncSession = Depends(get_db_session)):
    """
    Receive Zoom meeting events

    Signed with ``x-zm-signature``; the endpoint URL validation challenge is
    answered in place. Unsigned requests are only accepted in development and
    test when no secret is configured.
    """
    body = await request.body()
    secret = settings.ZOOM_WEBHOOK_SECRET_TOKEN
    verify_signature(
        secret,
        body,
        request.headers.get("x-zm-request-timestamp"),
        request.headers.get("x-zm-signature"),
        allow_unsigned=settings.ENVIRONMENT in ("development", "test"),
    )

    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        raise ValidationException(message="Webhook body is not valid JSON")

    if payload.get("event") == "endpoint.url_validation":
        plain_token = (payload.get("payload") or {}).get("plainToken")
        if not plain_token or not secret:
            raise ValidationException(message="Cannot answer URL validation")
        return url_validation_response(secret, plain_token)

    outcome = await ZoomWebhookHandler(db).handle(payload)
    return {"status": outcome}
