"""
Calendar Service
Event Mutation Coordinator and calendar queries

This service provides:
- Event creation, including recurring series materialization
- Single / series / following updates and deletes
- Attendee management and RSVP
- Calendar listing, upcoming events and search

Multi-row mutations run in one transaction under a per-series lock.
Linked video meetings are updated after the commit; their failures come
back as warnings, never as errors.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.core.config import settings
from lms_backend.core.exceptions import (
    AuthorizationException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from lms_backend.core.logging import get_logger
from lms_backend.core.permissions import PermissionManager, PermissionSet
from lms_backend.db.models import CalendarEvent, Course, EventAttendee, ExternalEventLink, User
from lms_backend.services.audit import AuditSink
from lms_backend.services.calendar.locks import SeriesLockManager, series_locks
from lms_backend.services.calendar.models import (
    AttendeeDetails,
    AttendeeStatus,
    EventChanges,
    EventCreate,
    EventDetails,
    EventFilters,
    EventStatus,
    MutationResult,
    MutationScope,
    Occurrence,
    OccurrenceSpec,
    RecurringParent,
    classify,
)
from lms_backend.services.calendar.recurrence import expand
from lms_backend.services.video.base import VideoConferenceProvider

logger = get_logger(__name__)

ENTITY_TYPE = "CalendarEvent"

# Fields a linked video meeting mirrors
MEETING_FIELDS = ("title", "description", "start_time", "end_time")


def _check_window(start_time: datetime, end_time: datetime, all_day: bool) -> None:
    if all_day:
        if end_time < start_time:
            raise ValidationException(
                message="End time cannot precede start time",
                details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
            )
    elif end_time <= start_time:
        raise ValidationException(
            message="End time must be after start time",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )


def _ordered(rows: Sequence[CalendarEvent]) -> List[CalendarEvent]:
    return sorted(rows, key=lambda r: (r.start_time, str(r.id)))


class CalendarService:
    """
    Calendar operations for one request

    Example:
        ```python
        service = CalendarService(db, video=zoom_client, audit=audit_sink)
        result = await service.delete_event(actor, event_id, MutationScope.FOLLOWING)
        ```
    """

    def __init__(
        self,
        db: AsyncSession,
        video: Optional[VideoConferenceProvider] = None,
        audit: Optional[AuditSink] = None,
        locks: Optional[SeriesLockManager] = None,
        video_timeout: Optional[float] = None,
    ):
        """
        Initialize the calendar service

        Args:
            db: Database session
            video: Video-conference provider (meetings are skipped if None)
            audit: Audit sink (auditing is skipped if None)
            locks: Series lock manager (process-wide default if None)
            video_timeout: Bound on each video-provider call in seconds
        """
        self.db = db
        self.video = video
        self.audit = audit
        self.locks = locks if locks is not None else series_locks
        self.video_timeout = video_timeout or settings.ZOOM_TIMEOUT_SECONDS

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _get_row(self, event_id: uuid.UUID) -> CalendarEvent:
        result = await self.db.execute(
            select(CalendarEvent)
            .where(CalendarEvent.id == event_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundException("Event", details={"event_id": str(event_id)})
        return row

    async def _series_rows(self, parent_id: uuid.UUID) -> List[CalendarEvent]:
        """Parent plus every child, ordered by start time"""
        result = await self.db.execute(
            select(CalendarEvent)
            .where(or_(CalendarEvent.id == parent_id, CalendarEvent.parent_event_id == parent_id))
            .order_by(CalendarEvent.start_time, CalendarEvent.id)
            .execution_options(populate_existing=True)
        )
        rows = list(result.scalars().all())
        for row in rows:
            if row.id == parent_id and row.parent_event_id is not None:
                # A parent reference must never point at another child
                raise ValidationException(
                    message="Recurring parent is itself an occurrence",
                    details={"event_id": str(parent_id), "parent_event_id": str(row.parent_event_id)},
                )
        return rows

    async def _scope_rows(self, row: CalendarEvent, scope: MutationScope) -> List[CalendarEvent]:
        shape = classify(row)

        if scope == MutationScope.SINGLE or not isinstance(shape, (RecurringParent, Occurrence)):
            return [row]

        rows = await self._series_rows(shape.series_id)

        if scope == MutationScope.FOLLOWING and isinstance(shape, Occurrence):
            return [
                r for r in rows
                if r.parent_event_id is not None and r.start_time >= row.start_time
            ]

        # Series, or following applied to the parent itself
        return rows

    def _ensure_owner(self, actor: PermissionSet, rows: Sequence[CalendarEvent], action: str) -> None:
        for row in rows:
            if row.created_by_id != actor.user_id:
                logger.warning(
                    f"User {actor.user_id} denied {action} on event {row.id}: "
                    f"not the creator ({row.created_by_id})"
                )
                raise AuthorizationException(
                    message=f"Only the event creator can {action} this event",
                    details={"event_id": str(row.id)},
                )

    def _ensure_can_view_calendar(self, actor: PermissionSet) -> None:
        if not PermissionManager.can_view_calendar(actor):
            logger.warning(f"User {actor.user_id} denied calendar view: missing CALENDAR_VIEW")
            raise AuthorizationException(message="Calendar access denied")

    async def _attendees_by_event(
        self, event_ids: Sequence[uuid.UUID]
    ) -> Dict[uuid.UUID, List[EventAttendee]]:
        grouped: Dict[uuid.UUID, List[EventAttendee]] = {event_id: [] for event_id in event_ids}
        if not event_ids:
            return grouped
        result = await self.db.execute(
            select(EventAttendee)
            .where(EventAttendee.event_id.in_(event_ids))
            .order_by(EventAttendee.created_at)
        )
        for attendee in result.scalars().all():
            grouped[attendee.event_id].append(attendee)
        return grouped

    async def _details(
        self, actor: PermissionSet, rows: Sequence[CalendarEvent]
    ) -> List[EventDetails]:
        attendees = await self._attendees_by_event([r.id for r in rows])
        details = []
        for row in rows:
            item = EventDetails.model_validate(row)
            item.attendees = [AttendeeDetails.model_validate(a) for a in attendees[row.id]]
            if row.created_by_id != actor.user_id:
                # Host link stays with the creator
                item.zoom_start_url = None
            details.append(item)
        return details

    async def _ensure_users_exist(self, user_ids: Sequence[uuid.UUID]) -> None:
        if not user_ids:
            return
        result = await self.db.execute(select(User.id).where(User.id.in_(user_ids)))
        missing = set(user_ids) - set(result.scalars().all())
        if missing:
            raise NotFoundException(
                "User", details={"user_ids": sorted(str(user_id) for user_id in missing)}
            )

    async def _video_call(
        self, description: str, call: Awaitable[Any], warnings: List[str]
    ) -> Any:
        """Run one provider call with a timeout, downgrading failure to a warning"""
        try:
            return await asyncio.wait_for(call, timeout=self.video_timeout)
        except asyncio.TimeoutError:
            message = f"{description} timed out after {self.video_timeout}s"
        except Exception as e:
            message = f"{description} failed: {e}"

        logger.warning(f"Video conference side effect degraded: {message}")
        warnings.append(message)
        return None

    async def _audit(
        self,
        actor: PermissionSet,
        action: str,
        event_id: uuid.UUID,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.audit is not None:
            await self.audit.record(actor.user_id, action, ENTITY_TYPE, str(event_id), metadata)

    # ========================================================================
    # Create
    # ========================================================================

    async def create_event(self, actor: PermissionSet, data: EventCreate) -> MutationResult:
        """
        Create a standalone event or a recurring series

        For a recurring event the parent row is the first occurrence and
        holds the rule; the remaining occurrences become children.

        Raises:
            AuthorizationException: Missing calendar-manage or course edit rights
            ValidationException: Bad time window or recurrence rule
            NotFoundException: Unknown course or attendee
        """
        if not PermissionManager.can_manage_calendar(actor):
            logger.warning(f"User {actor.user_id} denied event creation: missing CALENDAR_MANAGE")
            raise AuthorizationException(message="Insufficient permissions to create events")

        if data.course_id is not None:
            result = await self.db.execute(select(Course).where(Course.id == data.course_id))
            course = result.scalar_one_or_none()
            if course is None:
                raise NotFoundException("Course", details={"course_id": str(data.course_id)})
            if not PermissionManager.can_access_course(
                actor, course.id, "edit", author_id=course.instructor_id
            ):
                logger.warning(
                    f"User {actor.user_id} denied event creation for course {course.id}: "
                    f"no edit access"
                )
                raise AuthorizationException(
                    message="Insufficient permissions for this course",
                    details={"course_id": str(course.id)},
                )

        _check_window(data.start_time, data.end_time, data.all_day)

        attendee_ids = list(dict.fromkeys(data.attendee_ids))
        await self._ensure_users_exist(attendee_ids)

        base = OccurrenceSpec(
            start_time=data.start_time,
            end_time=data.end_time,
            title=data.title,
            description=data.description,
            location=data.location,
            all_day=data.all_day,
            attendee_ids=attendee_ids,
        )
        occurrences = expand(data.recurrence, base) if data.recurrence else [base]

        parent_id = uuid.uuid4()
        rows: List[CalendarEvent] = []
        for index, occurrence in enumerate(occurrences):
            row = CalendarEvent(
                id=parent_id if index == 0 else uuid.uuid4(),
                title=occurrence.title,
                description=occurrence.description,
                location=occurrence.location,
                start_time=occurrence.start_time,
                end_time=occurrence.end_time,
                all_day=occurrence.all_day,
                type=data.type.value,
                status=EventStatus.SCHEDULED.value,
                course_id=data.course_id,
                created_by_id=actor.user_id,
                is_recurring=False,
                parent_event_id=None if index == 0 else parent_id,
            )
            if index == 0 and data.recurrence is not None:
                row.is_recurring = True
                row.recurrence_type = data.recurrence.type.value
                row.recurrence_interval = data.recurrence.interval
                row.recurrence_end = data.recurrence.end_date
                row.recurrence_count = data.recurrence.count
            rows.append(row)

        try:
            self.db.add_all(rows)
            await self.db.flush()
            self.db.add_all(
                EventAttendee(
                    event_id=row.id,
                    user_id=user_id,
                    status=AttendeeStatus.PENDING.value,
                )
                for row in rows
                for user_id in occurrences[0].attendee_ids
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"User {actor.user_id} created event {parent_id} "
            f"({len(rows)} occurrence(s), {len(attendee_ids)} attendee(s))"
        )

        warnings: List[str] = []
        if data.zoom_meeting:
            await self._attach_meeting(rows[0], warnings)

        await self._audit(
            actor,
            "CREATE_EVENT",
            parent_id,
            {"occurrences": len(rows), "recurring": data.recurrence is not None},
        )
        return MutationResult(affected_event_ids=[r.id for r in rows], warnings=warnings)

    async def _attach_meeting(self, row: CalendarEvent, warnings: List[str]) -> None:
        if self.video is None:
            warnings.append("Video conferencing is not configured; no meeting was created")
            return

        meeting = await self._video_call(
            f"Creating video meeting for event {row.id}",
            self.video.create_meeting(row.start_time, row.end_time, row.title, row.description),
            warnings,
        )
        if meeting is None:
            return

        row.zoom_meeting_id = meeting.meeting_id
        row.zoom_join_url = meeting.join_url
        row.zoom_start_url = meeting.start_url
        row.zoom_password = meeting.password
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(f"Meeting {meeting.meeting_id} created but not linked to event {row.id}")
            raise

    # ========================================================================
    # Read
    # ========================================================================

    async def get_event(self, actor: PermissionSet, event_id: uuid.UUID) -> EventDetails:
        """Fetch one event; only its creator and attendees may see it"""
        row = await self._get_row(event_id)
        classify(row)

        [details] = await self._details(actor, [row])
        if row.created_by_id != actor.user_id and not any(
            a.user_id == actor.user_id for a in details.attendees
        ):
            logger.warning(f"User {actor.user_id} denied access to event {event_id}")
            raise AuthorizationException(
                message="Access denied to this event",
                details={"event_id": str(event_id)},
            )
        return details

    async def get_series(self, actor: PermissionSet, event_id: uuid.UUID) -> List[EventDetails]:
        """Fetch the whole series an event belongs to, ordered by start time"""
        row = await self._get_row(event_id)
        shape = classify(row)

        if isinstance(shape, (RecurringParent, Occurrence)):
            rows = await self._series_rows(shape.series_id)
        else:
            rows = [row]

        details = await self._details(actor, rows)
        visible = any(
            d.created_by_id == actor.user_id or any(a.user_id == actor.user_id for a in d.attendees)
            for d in details
        )
        if not visible:
            logger.warning(f"User {actor.user_id} denied access to series of event {event_id}")
            raise AuthorizationException(
                message="Access denied to this event",
                details={"event_id": str(event_id)},
            )
        return details

    def _visible_to(self, user_id: uuid.UUID):
        attending = select(EventAttendee.event_id).where(EventAttendee.user_id == user_id)
        return select(CalendarEvent).where(
            or_(CalendarEvent.created_by_id == user_id, CalendarEvent.id.in_(attending))
        )

    def _apply_filters(self, stmt, filters: EventFilters):
        if filters.start_date is not None:
            stmt = stmt.where(CalendarEvent.end_time >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(CalendarEvent.start_time <= filters.end_date)
        if filters.course_id is not None:
            stmt = stmt.where(CalendarEvent.course_id == filters.course_id)
        if filters.type is not None:
            stmt = stmt.where(CalendarEvent.type == filters.type.value)
        if filters.status is not None:
            stmt = stmt.where(CalendarEvent.status == filters.status.value)
        if filters.created_by_id is not None:
            stmt = stmt.where(CalendarEvent.created_by_id == filters.created_by_id)
        if filters.attendee_id is not None:
            stmt = stmt.where(
                CalendarEvent.id.in_(
                    select(EventAttendee.event_id).where(
                        EventAttendee.user_id == filters.attendee_id
                    )
                )
            )
        return stmt

    async def list_events(
        self, actor: PermissionSet, filters: Optional[EventFilters] = None
    ) -> List[EventDetails]:
        """Events the actor created or attends, ordered by start time"""
        self._ensure_can_view_calendar(actor)
        stmt = self._apply_filters(self._visible_to(actor.user_id), filters or EventFilters())
        result = await self.db.execute(stmt.order_by(CalendarEvent.start_time, CalendarEvent.id))
        return await self._details(actor, list(result.scalars().all()))

    async def upcoming_events(
        self,
        actor: PermissionSet,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[EventDetails]:
        """Scheduled events starting within the next ``days`` days"""
        days = days if days is not None else settings.UPCOMING_EVENTS_DAYS
        if days < 1:
            raise ValidationException(message="Days must be positive", details={"days": days})

        self._ensure_can_view_calendar(actor)
        now = now or datetime.utcnow()
        stmt = self._visible_to(actor.user_id).where(
            CalendarEvent.status == EventStatus.SCHEDULED.value,
            CalendarEvent.start_time >= now,
            CalendarEvent.start_time <= now + timedelta(days=days),
        )
        result = await self.db.execute(stmt.order_by(CalendarEvent.start_time, CalendarEvent.id))
        return await self._details(actor, list(result.scalars().all()))

    async def search_events(
        self,
        actor: PermissionSet,
        query: str,
        filters: Optional[EventFilters] = None,
    ) -> List[EventDetails]:
        """Case-insensitive substring search over title, description and location"""
        query = (query or "").strip()
        if not query:
            raise ValidationException(message="Search query is required")

        self._ensure_can_view_calendar(actor)
        needle = query.lower()
        stmt = self._visible_to(actor.user_id).where(
            or_(
                func.lower(CalendarEvent.title).contains(needle, autoescape=True),
                func.lower(CalendarEvent.description).contains(needle, autoescape=True),
                func.lower(CalendarEvent.location).contains(needle, autoescape=True),
            )
        )
        stmt = self._apply_filters(stmt, filters or EventFilters())
        result = await self.db.execute(stmt.order_by(CalendarEvent.start_time, CalendarEvent.id))
        return await self._details(actor, list(result.scalars().all()))

    # ========================================================================
    # Update
    # ========================================================================

    async def update_event(
        self,
        actor: PermissionSet,
        event_id: uuid.UUID,
        changes: EventChanges,
        scope: MutationScope = MutationScope.SINGLE,
    ) -> MutationResult:
        """
        Apply field changes to one event, its whole series, or it and the
        later occurrences.

        Time changes are applied as a shift: the target's new start/end
        define a delta that moves every affected row, so the series keeps
        its spacing. Other fields are copied to every affected row.

        Raises:
            AuthorizationException: Actor is not the creator of every affected row
            ValidationException: No changes, or a resulting time window is invalid
            NotFoundException: Unknown event
        """
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationException(message="No changes supplied")

        row = await self._get_row(event_id)
        series_id = classify(row).series_id

        async with self.locks.hold(series_id):
            row = await self._get_row(event_id)
            targets = await self._scope_rows(row, scope)
            self._ensure_owner(actor, targets, "update")

            start_delta = fields["start_time"] - row.start_time if "start_time" in fields else timedelta(0)
            end_delta = fields["end_time"] - row.end_time if "end_time" in fields else timedelta(0)
            plain = {
                k: (v.value if isinstance(v, Enum) else v)
                for k, v in fields.items()
                if k not in ("start_time", "end_time")
            }

            # Validate every row before touching any
            planned: List[Tuple[CalendarEvent, datetime, datetime]] = []
            for target in _ordered(targets):
                new_start = target.start_time + start_delta
                new_end = target.end_time + end_delta
                _check_window(new_start, new_end, plain.get("all_day", target.all_day))
                planned.append((target, new_start, new_end))

            try:
                for target, new_start, new_end in planned:
                    target.start_time = new_start
                    target.end_time = new_end
                    for key, value in plain.items():
                        setattr(target, key, value)
                    await self.db.flush()
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                logger.error(f"Update of event {event_id} (scope={scope.value}) rolled back")
                raise

        logger.info(
            f"User {actor.user_id} updated event {event_id} (scope={scope.value}, "
            f"rows={len(planned)}, fields={sorted(fields)})"
        )

        warnings: List[str] = []
        if self.video is not None and any(k in fields for k in MEETING_FIELDS):
            for target, _, _ in planned:
                if target.zoom_meeting_id:
                    await self._video_call(
                        f"Updating video meeting {target.zoom_meeting_id}",
                        self.video.update_meeting(
                            target.zoom_meeting_id,
                            {k: getattr(target, k) for k in MEETING_FIELDS},
                        ),
                        warnings,
                    )

        affected = [target.id for target, _, _ in planned]
        await self._audit(
            actor,
            "UPDATE_EVENT",
            event_id,
            {"scope": scope.value, "fields": sorted(fields), "affected": len(affected)},
        )
        return MutationResult(affected_event_ids=affected, warnings=warnings)

    # ========================================================================
    # Delete
    # ========================================================================

    async def delete_event(
        self,
        actor: PermissionSet,
        event_id: uuid.UUID,
        scope: MutationScope = MutationScope.SINGLE,
    ) -> MutationResult:
        """
        Delete one event, its whole series, or it and the later occurrences.

        Scope ``single`` touches only the target, with one exception: deleting
        a recurring parent alone promotes its earliest child to parent (it
        takes over the rule and the other children are re-pointed to it).
        Without that the children would lose their series or be removed with
        the parent. The promoted row is not reported in ``affected_event_ids``.

        Raises:
            AuthorizationException: Actor is not the creator of every affected row
            NotFoundException: Unknown event
        """
        row = await self._get_row(event_id)
        series_id = classify(row).series_id

        async with self.locks.hold(series_id):
            row = await self._get_row(event_id)
            targets = _ordered(await self._scope_rows(row, scope))
            self._ensure_owner(actor, targets, "delete")

            target_ids = [t.id for t in targets]
            meeting_ids = list(dict.fromkeys(t.zoom_meeting_id for t in targets if t.zoom_meeting_id))

            try:
                if scope == MutationScope.SINGLE and isinstance(classify(row), RecurringParent):
                    await self._promote_successor(row)

                await self.db.execute(
                    delete(EventAttendee).where(EventAttendee.event_id.in_(target_ids))
                )
                await self.db.execute(
                    delete(ExternalEventLink).where(ExternalEventLink.event_id.in_(target_ids))
                )
                # Children before the parent they reference
                children = [t.id for t in targets if t.parent_event_id is not None]
                parents = [t.id for t in targets if t.parent_event_id is None]
                for ids in (children, parents):
                    if ids:
                        await self.db.execute(
                            delete(CalendarEvent).where(CalendarEvent.id.in_(ids))
                        )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                logger.error(f"Delete of event {event_id} (scope={scope.value}) rolled back")
                raise

        logger.info(
            f"User {actor.user_id} deleted event {event_id} "
            f"(scope={scope.value}, rows={len(target_ids)})"
        )

        warnings: List[str] = []
        if meeting_ids:
            if self.video is None:
                warnings.append("Video conferencing is not configured; linked meetings were not deleted")
            else:
                for meeting_id in meeting_ids:
                    await self._video_call(
                        f"Deleting video meeting {meeting_id}",
                        self.video.delete_meeting(meeting_id),
                        warnings,
                    )

        await self._audit(
            actor,
            "DELETE_EVENT",
            event_id,
            {"scope": scope.value, "affected": len(target_ids)},
        )
        return MutationResult(affected_event_ids=target_ids, warnings=warnings)

    async def _promote_successor(self, parent: CalendarEvent) -> None:
        result = await self.db.execute(
            select(CalendarEvent)
            .where(CalendarEvent.parent_event_id == parent.id)
            .order_by(CalendarEvent.start_time, CalendarEvent.id)
        )
        children = list(result.scalars().all())
        if not children:
            return

        successor, rest = children[0], children[1:]
        successor.parent_event_id = None
        successor.is_recurring = True
        successor.recurrence_type = parent.recurrence_type
        successor.recurrence_interval = parent.recurrence_interval
        successor.recurrence_end = parent.recurrence_end
        successor.recurrence_count = parent.recurrence_count
        await self.db.flush()

        for child in rest:
            child.parent_event_id = successor.id
        await self.db.flush()

        logger.info(f"Event {successor.id} promoted to parent of series {parent.id}")

    # ========================================================================
    # Attendees
    # ========================================================================

    async def add_attendees(
        self, actor: PermissionSet, event_id: uuid.UUID, user_ids: Sequence[uuid.UUID]
    ) -> MutationResult:
        """
        Add attendees to one event; all or nothing

        Raises:
            ConflictException: A user is already an attendee (or listed twice)
        """
        if not user_ids:
            raise ValidationException(message="No attendees supplied")

        row = await self._get_row(event_id)
        async with self.locks.hold(classify(row).series_id):
            row = await self._get_row(event_id)
            self._ensure_owner(actor, [row], "manage attendees of")

            if len(set(user_ids)) != len(user_ids):
                raise ConflictException(
                    message="Duplicate attendee in request",
                    details={"event_id": str(event_id)},
                )

            await self._ensure_users_exist(user_ids)

            result = await self.db.execute(
                select(EventAttendee.user_id).where(
                    EventAttendee.event_id == event_id,
                    EventAttendee.user_id.in_(user_ids),
                )
            )
            existing = list(result.scalars().all())
            if existing:
                raise ConflictException(
                    message="User is already an attendee",
                    details={"event_id": str(event_id), "user_ids": [str(u) for u in existing]},
                )

            try:
                self.db.add_all(
                    EventAttendee(event_id=event_id, user_id=user_id, status=AttendeeStatus.PENDING.value)
                    for user_id in user_ids
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        await self._audit(
            actor, "ADD_ATTENDEES", event_id, {"user_ids": [str(u) for u in user_ids]}
        )
        return MutationResult(affected_event_ids=[event_id])

    async def _get_attendee(self, event_id: uuid.UUID, user_id: uuid.UUID) -> EventAttendee:
        result = await self.db.execute(
            select(EventAttendee).where(
                EventAttendee.event_id == event_id,
                EventAttendee.user_id == user_id,
            )
        )
        attendee = result.scalar_one_or_none()
        if attendee is None:
            raise NotFoundException(
                "Attendee", details={"event_id": str(event_id), "user_id": str(user_id)}
            )
        return attendee

    async def remove_attendee(
        self, actor: PermissionSet, event_id: uuid.UUID, user_id: uuid.UUID
    ) -> MutationResult:
        """Remove an attendee; the creator may remove anyone, a user only themselves"""
        row = await self._get_row(event_id)
        if user_id != actor.user_id:
            self._ensure_owner(actor, [row], "manage attendees of")

        attendee = await self._get_attendee(event_id, user_id)
        try:
            await self.db.delete(attendee)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._audit(actor, "REMOVE_ATTENDEE", event_id, {"user_id": str(user_id)})
        return MutationResult(affected_event_ids=[event_id])

    async def update_rsvp(
        self,
        actor: PermissionSet,
        event_id: uuid.UUID,
        status: AttendeeStatus,
        now: Optional[datetime] = None,
    ) -> AttendeeDetails:
        """Set the actor's own RSVP status"""
        await self._get_row(event_id)
        attendee = await self._get_attendee(event_id, actor.user_id)

        attendee.status = status.value
        attendee.response_time = now or datetime.utcnow()
        await self.db.commit()

        logger.info(f"User {actor.user_id} responded {status.value} to event {event_id}")
        return AttendeeDetails.model_validate(attendee)

    async def mark_attendance(
        self,
        actor: PermissionSet,
        event_id: uuid.UUID,
        user_id: uuid.UUID,
        joined: bool = True,
        now: Optional[datetime] = None,
    ) -> AttendeeDetails:
        """Record a join or leave for an attendee; creator only"""
        row = await self._get_row(event_id)
        self._ensure_owner(actor, [row], "mark attendance for")

        attendee = await self._get_attendee(event_id, user_id)
        record_attendance(attendee, joined, now)
        await self.db.commit()

        await self._audit(
            actor, "MARK_ATTENDANCE", event_id, {"user_id": str(user_id), "joined": joined}
        )
        return AttendeeDetails.model_validate(attendee)


def record_attendance(attendee: EventAttendee, joined: bool, now: Optional[datetime] = None) -> None:
    now = now or datetime.utcnow()
    attendee.attendance_marked = True
    if joined:
        attendee.joined_at = now
    else:
        attendee.left_at = now
