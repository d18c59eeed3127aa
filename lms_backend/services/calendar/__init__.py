"""
Calendar Service
Recurring events, series mutations and attendees

This service provides:
- Recurrence expansion (daily, weekly, monthly, yearly)
- Single / series / following updates and deletes
- Attendee management, RSVP and attendance
"""

from lms_backend.services.calendar.locks import SeriesLockManager, series_locks
from lms_backend.services.calendar.models import (
    AttendeeDetails,
    AttendeeStatus,
    EventChanges,
    EventCreate,
    EventDetails,
    EventFilters,
    EventStatus,
    EventType,
    MutationResult,
    MutationScope,
    Occurrence,
    OccurrenceSpec,
    RecurrenceRule,
    RecurrenceType,
    RecurringParent,
    StandaloneEvent,
    classify,
)
from lms_backend.services.calendar.recurrence import expand
from lms_backend.services.calendar.service import CalendarService

__all__ = [
    # Service
    "CalendarService",
    "expand",
    "SeriesLockManager",
    "series_locks",
    # Models
    "AttendeeDetails",
    "AttendeeStatus",
    "EventChanges",
    "EventCreate",
    "EventDetails",
    "EventFilters",
    "EventStatus",
    "EventType",
    "MutationResult",
    "MutationScope",
    "Occurrence",
    "OccurrenceSpec",
    "RecurrenceRule",
    "RecurrenceType",
    "RecurringParent",
    "StandaloneEvent",
    "classify",
]
