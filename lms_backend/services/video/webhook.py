"""
Zoom Webhook Handling
Signature verification and meeting lifecycle updates for calendar events
"""

import hashlib
import hmac
import time
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.core.exceptions import AuthenticationException, ValidationException
from lms_backend.core.logging import get_logger
from lms_backend.db.models import CalendarEvent, EventAttendee, User
from lms_backend.services.calendar.models import EventStatus
from lms_backend.services.calendar.service import record_attendance

logger = get_logger(__name__)

SIGNATURE_VERSION = "v0"
MAX_TIMESTAMP_SKEW_SECONDS = 300


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    message = f"{SIGNATURE_VERSION}:{timestamp}:".encode() + body
    digest = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_signature(
    secret: Optional[str],
    body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    allow_unsigned: bool = False,
    now: Optional[float] = None,
) -> None:
    """
    Verify the ``x-zm-signature`` header

    Without a secret every request is rejected unless ``allow_unsigned`` is
    set (development and test environments). Timestamps further than
    ``MAX_TIMESTAMP_SKEW_SECONDS`` from ``now`` are rejected as replays.

    Raises:
        AuthenticationException: Missing secret, stale timestamp, or missing
            or mismatching signature
    """
    if not secret:
        if allow_unsigned:
            return
        logger.error("Zoom webhook rejected: ZOOM_WEBHOOK_SECRET_TOKEN is not configured")
        raise AuthenticationException(message="Invalid webhook signature")

    if not signature or not timestamp:
        logger.warning("Zoom webhook rejected: missing signature headers")
        raise AuthenticationException(message="Invalid webhook signature")

    try:
        sent_at = int(timestamp)
    except ValueError:
        logger.warning(f"Zoom webhook rejected: malformed timestamp {timestamp!r}")
        raise AuthenticationException(message="Invalid webhook signature")

    now = time.time() if now is None else now
    if abs(now - sent_at) > MAX_TIMESTAMP_SKEW_SECONDS:
        logger.warning(f"Zoom webhook rejected: stale timestamp {sent_at}")
        raise AuthenticationException(message="Invalid webhook signature")

    expected = compute_signature(secret, timestamp, body)
    if not hmac.compare_digest(expected, signature):
        logger.warning("Zoom webhook rejected: signature mismatch")
        raise AuthenticationException(message="Invalid webhook signature")


def url_validation_response(secret: str, plain_token: str) -> Dict[str, str]:
    """Answer Zoom's endpoint.url_validation challenge"""
    encrypted = hmac.new(secret.encode(), plain_token.encode(), hashlib.sha256).hexdigest()
    return {"plainToken": plain_token, "encryptedToken": encrypted}


class ZoomWebhookHandler:
    """
    Applies Zoom meeting events to calendar events

    - meeting.started: linked events become IN_PROGRESS
    - meeting.ended: linked events become COMPLETED
    - meeting.participant_joined / left: attendee attendance is marked
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def handle(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> str:
        """
        Handle one webhook payload

        Returns:
            What was done ("status_updated", "attendance_marked" or "ignored")
        """
        event = payload.get("event")
        meeting = (payload.get("payload") or {}).get("object") or {}

        if event not in (
            "meeting.started",
            "meeting.ended",
            "meeting.participant_joined",
            "meeting.participant_left",
        ):
            logger.info(f"Unhandled Zoom webhook event: {event}")
            return "ignored"

        if meeting.get("id") is None:
            raise ValidationException(message="Webhook payload has no meeting id", details={"event": event})
        meeting_id = str(meeting["id"])

        if event == "meeting.started":
            return await self._set_status(meeting_id, EventStatus.IN_PROGRESS)
        if event == "meeting.ended":
            return await self._set_status(meeting_id, EventStatus.COMPLETED)

        email = (meeting.get("participant") or {}).get("email")
        return await self._mark(meeting_id, email, event == "meeting.participant_joined", now)

    async def _set_status(self, meeting_id: str, status: EventStatus) -> str:
        result = await self.db.execute(
            update(CalendarEvent)
            .where(CalendarEvent.zoom_meeting_id == meeting_id)
            .values(status=status.value)
        )
        await self.db.commit()
        logger.info(f"Zoom meeting {meeting_id}: {result.rowcount} event(s) set to {status.value}")
        return "status_updated"

    async def _mark(
        self, meeting_id: str, email: Optional[str], joined: bool, now: Optional[datetime]
    ) -> str:
        if not email:
            logger.info(f"Zoom meeting {meeting_id}: participant without email ignored")
            return "ignored"

        result = await self.db.execute(
            select(EventAttendee)
            .join(CalendarEvent, CalendarEvent.id == EventAttendee.event_id)
            .join(User, User.id == EventAttendee.user_id)
            .where(
                CalendarEvent.zoom_meeting_id == meeting_id,
                func.lower(User.email) == email.lower(),
            )
        )
        attendees = list(result.scalars().all())
        if not attendees:
            logger.info(f"Zoom meeting {meeting_id}: participant is not an attendee")
            return "ignored"

        for attendee in attendees:
            record_attendance(attendee, joined, now)
        await self.db.commit()
        return "attendance_marked"
