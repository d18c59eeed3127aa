"""
Calendar Service Models
Enums, recurrence rules, event shapes and mutation inputs/outputs
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lms_backend.core.config import settings
from lms_backend.core.exceptions import ValidationException


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Event times are stored as naive UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Enums
# ============================================================================

class EventType(str, Enum):
    MEETING = "MEETING"
    LECTURE = "LECTURE"
    WORKSHOP = "WORKSHOP"
    EXAM = "EXAM"
    ASSIGNMENT_DUE = "ASSIGNMENT_DUE"
    OFFICE_HOURS = "OFFICE_HOURS"
    BREAK = "BREAK"


class EventStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AttendeeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    MAYBE = "maybe"


class RecurrenceType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class MutationScope(str, Enum):
    """Which rows of a series an update or delete touches"""

    SINGLE = "single"
    SERIES = "series"
    FOLLOWING = "following"


# ============================================================================
# Recurrence
# ============================================================================

class RecurrenceRule(BaseModel):
    """
    Recurrence rule held by a recurring parent

    Attributes:
        type: Recurrence unit (day, week, month, year)
        interval: Number of units between occurrences
        end_date: Last allowed occurrence start (inclusive)
        count: Total number of occurrences, the anchor included
    """

    type: RecurrenceType
    interval: int = 1
    end_date: Optional[datetime] = None
    count: Optional[int] = None

    normalize_times = field_validator("end_date")(to_naive_utc)

    def check(self, base_start: Optional[datetime] = None) -> None:
        """Raise ValidationException unless the rule describes a bounded series"""
        max_interval = settings.RECURRENCE_MAX_INTERVAL
        max_count = settings.RECURRENCE_MAX_OCCURRENCES

        if not 1 <= self.interval <= max_interval:
            raise ValidationException(
                message=f"Recurrence interval must be between 1 and {max_interval}",
                details={"interval": self.interval},
            )

        if self.count is None and self.end_date is None:
            raise ValidationException(
                message="Recurrence requires an end date or an occurrence count",
                details={"type": self.type.value},
            )

        if self.count is not None and not 1 <= self.count <= max_count:
            raise ValidationException(
                message=f"Recurrence count must be between 1 and {max_count}",
                details={"count": self.count},
            )

        if base_start is not None and self.end_date is not None and self.end_date < base_start:
            raise ValidationException(
                message="Recurrence end date precedes the first occurrence",
                details={"end_date": self.end_date.isoformat(), "start_time": base_start.isoformat()},
            )


class OccurrenceSpec(BaseModel):
    """One concrete occurrence produced by expansion"""

    start_time: datetime
    end_time: datetime
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    all_day: bool = False
    attendee_ids: List[uuid.UUID] = Field(default_factory=list)


# ============================================================================
# Event shapes
# ============================================================================

class StandaloneEvent(BaseModel):
    kind: Literal["standalone"] = "standalone"
    id: uuid.UUID

    @property
    def series_id(self) -> uuid.UUID:
        return self.id


class RecurringParent(BaseModel):
    kind: Literal["parent"] = "parent"
    id: uuid.UUID
    rule: Optional[RecurrenceRule] = None

    @property
    def series_id(self) -> uuid.UUID:
        return self.id


class Occurrence(BaseModel):
    kind: Literal["occurrence"] = "occurrence"
    id: uuid.UUID
    parent_id: uuid.UUID

    @property
    def series_id(self) -> uuid.UUID:
        return self.parent_id


EventShape = Union[StandaloneEvent, RecurringParent, Occurrence]


def classify(row) -> EventShape:
    """
    Classify a calendar_events row by its parent/rule columns.

    A row with a parent reference that also carries a rule is corrupt and is
    rejected rather than guessed at.
    """
    if row.parent_event_id is not None:
        if row.recurrence_type is not None or row.is_recurring:
            raise ValidationException(
                message="Occurrence cannot carry a recurrence rule",
                details={"event_id": str(row.id), "parent_event_id": str(row.parent_event_id)},
            )
        return Occurrence(id=row.id, parent_id=row.parent_event_id)

    if row.is_recurring:
        rule = None
        if row.recurrence_type is not None:
            rule = RecurrenceRule(
                type=RecurrenceType(row.recurrence_type),
                interval=row.recurrence_interval or 1,
                end_date=row.recurrence_end,
                count=row.recurrence_count,
            )
        return RecurringParent(id=row.id, rule=rule)

    return StandaloneEvent(id=row.id)


# ============================================================================
# Service inputs / outputs
# ============================================================================

class EventCreate(BaseModel):
    """Data for a new event; ``recurrence`` turns it into a recurring parent"""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=255)
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    type: EventType = EventType.MEETING
    course_id: Optional[uuid.UUID] = None
    attendee_ids: List[uuid.UUID] = Field(default_factory=list)
    recurrence: Optional[RecurrenceRule] = None
    zoom_meeting: bool = False

    normalize_times = field_validator("start_time", "end_time")(to_naive_utc)


class EventChanges(BaseModel):
    """
    Partial update; only fields that were set are applied

    ``description`` and ``location`` may be cleared with null; the other
    fields may be omitted but not nulled.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=255)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    all_day: Optional[bool] = None
    type: Optional[EventType] = None
    status: Optional[EventStatus] = None

    normalize_times = field_validator("start_time", "end_time")(to_naive_utc)

    @field_validator("title", "start_time", "end_time", "all_day", "type", "status")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("field cannot be null")
        return value


class EventFilters(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    course_id: Optional[uuid.UUID] = None
    type: Optional[EventType] = None
    status: Optional[EventStatus] = None
    created_by_id: Optional[uuid.UUID] = None
    attendee_id: Optional[uuid.UUID] = None

    normalize_times = field_validator("start_date", "end_date")(to_naive_utc)


class AttendeeDetails(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    status: AttendeeStatus
    response_time: Optional[datetime] = None
    attendance_marked: bool = False
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None


class EventDetails(BaseModel):
    """Read view of one calendar event with its attendees"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    all_day: bool
    type: EventType
    status: EventStatus
    course_id: Optional[uuid.UUID] = None
    created_by_id: uuid.UUID
    is_recurring: bool
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_interval: Optional[int] = None
    recurrence_end: Optional[datetime] = None
    recurrence_count: Optional[int] = None
    parent_event_id: Optional[uuid.UUID] = None
    zoom_meeting_id: Optional[str] = None
    zoom_join_url: Optional[str] = None
    zoom_start_url: Optional[str] = None
    zoom_password: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    attendees: List[AttendeeDetails] = Field(default_factory=list)


class MutationResult(BaseModel):
    """
    Outcome of a create/update/delete

    Warnings carry companion-service failures that did not abort the
    local mutation.
    """

    affected_event_ids: List[uuid.UUID] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
