"""
SQLAlchemy Database Models
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from lms_backend.db.base import Base, TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, Base):
    """User (principal) SQLAlchemy model"""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    hashed_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="STUDENT")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_super_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class PermissionGrant(UUIDMixin, TimestampMixin, Base):
    """Capability grant for one user; one row per (user, capability)"""

    __tablename__ = "permission_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "capability", name="uq_permission_grants_user_capability"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    capability: Mapped[str] = mapped_column(String(50), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    granted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class CourseAccess(UUIDMixin, TimestampMixin, Base):
    """Per-course view/edit grant"""

    __tablename__ = "course_access"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_course_access_user_course"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    can_view: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_edit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    granted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class ToolAccess(UUIDMixin, TimestampMixin, Base):
    """Per-tool access grant"""

    __tablename__ = "tool_access"
    __table_args__ = (
        UniqueConstraint("user_id", "tool_name", name="uq_tool_access_user_tool"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tool_name: Mapped[str] = mapped_column(String(100), nullable=False)
    can_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    granted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class UserSession(UUIDMixin, TimestampMixin, Base):
    """Login session bound to exactly one user"""

    __tablename__ = "sessions"

    token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class Course(UUIDMixin, TimestampMixin, Base):
    """Course SQLAlchemy model"""

    __tablename__ = "courses"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    instructor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")


class CalendarEvent(UUIDMixin, TimestampMixin, Base):
    """
    Calendar event row.

    One table holds standalone events, recurring parents (the rule holder)
    and their materialized occurrences; the service layer classifies rows
    into those shapes.
    """

    __tablename__ = "calendar_events"
    __table_args__ = (
        CheckConstraint(
            "parent_event_id IS NULL OR recurrence_type IS NULL",
            name="ck_calendar_events_child_has_no_rule",
        ),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    all_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="MEETING")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="SCHEDULED")
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )

    # Recurrence rule (parents only)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurrence_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    recurrence_interval: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    recurrence_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    recurrence_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    parent_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("calendar_events.id", ondelete="CASCADE"), nullable=True, index=True
    )

    # Linked video meeting
    zoom_meeting_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    zoom_join_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    zoom_start_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    zoom_password: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class EventAttendee(UUIDMixin, TimestampMixin, Base):
    """Attendee of a calendar event; unique per (event, user)"""

    __tablename__ = "event_attendees"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendees_event_user"),
    )

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calendar_events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    response_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    attendance_marked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    joined_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    left_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class CalendarIntegration(UUIDMixin, TimestampMixin, Base):
    """A user's link to an external calendar; one row per (user, provider)"""

    __tablename__ = "calendar_integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_calendar_integrations_user_provider"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    provider_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    calendar_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sync_direction: Mapped[str] = mapped_column(String(10), nullable=False, default="both")
    sync_status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class ExternalEventLink(UUIDMixin, TimestampMixin, Base):
    """Pairs a calendar event with its copy in one user's external calendar"""

    __tablename__ = "external_event_links"
    __table_args__ = (
        UniqueConstraint("integration_id", "event_id", name="uq_external_event_links_integration_event"),
        UniqueConstraint(
            "integration_id", "external_id", name="uq_external_event_links_integration_external"
        ),
    )

    integration_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calendar_integrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calendar_events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[str] = mapped_column(String(1024), nullable=False)


class AuditLog(UUIDMixin, TimestampMixin, Base):
    """Audit trail for permission-gated mutations"""

    __tablename__ = "audit_logs"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
