#!/usr/bin/env python3
"""
Unit Tests for the Zoom Client and Webhook
Tests for lms_backend/services/video/zoom.py and lms_backend/services/video/webhook.py
"""

import hashlib
import hmac
import time
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
import pytest_asyncio

from lms_backend.core.exceptions import (
    AuthenticationException,
    ValidationException,
    VideoConferenceException,
)
from lms_backend.core.permissions import Role
from lms_backend.db.models import CalendarEvent, EventAttendee
from lms_backend.services.video import ZoomClient, get_video_provider
from lms_backend.services.video.webhook import (
    ZoomWebhookHandler,
    compute_signature,
    url_validation_response,
    verify_signature,
)

START = datetime(2025, 1, 6, 10, 0)


def mock_response(status: int = 200, json_data=None, text: str = ""):
    """aiohttp response usable as an async context manager"""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data or {})
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.fixture
def client():
    client = ZoomClient(account_id="acct", client_id="id", client_secret="secret")
    client._access_token = "cached-token"
    client._token_expires_at = float("inf")
    return client


class TestZoomClient:
    """Test Zoom API calls"""

    def test_provider_disabled_without_credentials(self):
        assert get_video_provider() is None

    @pytest.mark.asyncio
    async def test_create_meeting(self, client):
        session = MagicMock()
        session.closed = False
        session.request.return_value = mock_response(
            201,
            {"id": 8123, "join_url": "https://zoom.us/j/8123", "start_url": "https://zoom.us/s/8123",
             "password": "abc"},
        )
        client._session = session

        meeting = await client.create_meeting(START, START + timedelta(minutes=90), "Lecture", "Week 1")

        method, url = session.request.call_args.args
        payload = session.request.call_args.kwargs["json"]
        assert (method, url) == ("POST", "https://api.zoom.us/v2/users/me/meetings")
        assert payload["start_time"] == "2025-01-06T10:00:00Z"
        assert payload["duration"] == 90
        assert payload["type"] == 2
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer cached-token"
        assert meeting.meeting_id == "8123"
        assert meeting.password == "abc"

    @pytest.mark.asyncio
    async def test_update_sends_changed_fields(self, client):
        session = MagicMock()
        session.closed = False
        session.request.return_value = mock_response(204)
        client._session = session

        await client.update_meeting(
            "8123", {"title": "New", "start_time": START, "end_time": START + timedelta(hours=1)}
        )

        payload = session.request.call_args.kwargs["json"]
        assert payload == {"topic": "New", "start_time": "2025-01-06T10:00:00Z", "duration": 60}

    @pytest.mark.asyncio
    async def test_delete_tolerates_missing_meeting(self, client):
        session = MagicMock()
        session.closed = False
        session.request.return_value = mock_response(404)
        client._session = session

        await client.delete_meeting("8123")

    @pytest.mark.asyncio
    async def test_http_error_raises(self, client):
        session = MagicMock()
        session.closed = False
        session.request.return_value = mock_response(500, text="oops")
        client._session = session

        with pytest.raises(VideoConferenceException) as exc_info:
            await client.delete_meeting("8123")
        assert exc_info.value.details["status"] == 500
        assert exc_info.value.details["provider"] == "zoom"

    @pytest.mark.asyncio
    async def test_connection_error_raises(self, client):
        session = MagicMock()
        session.closed = False
        session.request.side_effect = aiohttp.ClientConnectionError("refused")
        client._session = session

        with pytest.raises(VideoConferenceException):
            await client.delete_meeting("8123")

    @pytest.mark.asyncio
    async def test_token_fetched_with_account_credentials(self):
        client = ZoomClient(account_id="acct", client_id="id", client_secret="secret")
        session = MagicMock()
        session.closed = False
        session.post.return_value = mock_response(200, {"access_token": "fresh", "expires_in": 3600})
        client._session = session

        assert await client._get_access_token() == "fresh"
        assert session.post.call_args.kwargs["params"] == {
            "grant_type": "account_credentials",
            "account_id": "acct",
        }
        # Cached for the next call
        assert await client._get_access_token() == "fresh"
        assert session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with patch("lms_backend.services.video.zoom.settings.ZOOM_ACCOUNT_ID", None):
            client = ZoomClient(client_id="id", client_secret="secret")
        with pytest.raises(VideoConferenceException):
            await client._get_access_token()


class TestSignatures:
    """Test webhook signature checks"""

    SENT_AT = 1700000000

    def test_valid_signature_passes(self):
        body = b'{"event":"meeting.started"}'
        signature = compute_signature("s3cret", "1700000000", body)
        expected = hmac.new(b"s3cret", b"v0:1700000000:" + body, hashlib.sha256).hexdigest()

        assert signature == f"v0={expected}"
        verify_signature("s3cret", body, "1700000000", signature, now=self.SENT_AT + 60)

    def test_mismatch_rejected(self):
        with pytest.raises(AuthenticationException):
            verify_signature("s3cret", b"{}", "1700000000", "v0=deadbeef", now=self.SENT_AT)

    def test_missing_headers_rejected(self):
        with pytest.raises(AuthenticationException):
            verify_signature("s3cret", b"{}", None, None)

    def test_stale_timestamp_rejected(self):
        signature = compute_signature("s3cret", "1700000000", b"{}")
        with pytest.raises(AuthenticationException):
            verify_signature("s3cret", b"{}", "1700000000", signature, now=self.SENT_AT + 301)

    def test_future_timestamp_rejected(self):
        signature = compute_signature("s3cret", "1700000000", b"{}")
        with pytest.raises(AuthenticationException):
            verify_signature("s3cret", b"{}", "1700000000", signature, now=self.SENT_AT - 301)

    def test_malformed_timestamp_rejected(self):
        signature = compute_signature("s3cret", "yesterday", b"{}")
        with pytest.raises(AuthenticationException):
            verify_signature("s3cret", b"{}", "yesterday", signature)

    def test_current_time_used_by_default(self):
        timestamp = str(int(time.time()))
        verify_signature("s3cret", b"{}", timestamp, compute_signature("s3cret", timestamp, b"{}"))

    def test_unsigned_rejected_without_secret(self):
        with pytest.raises(AuthenticationException):
            verify_signature(None, b"{}", None, None)

    def test_unsigned_allowed_when_permitted(self):
        verify_signature(None, b"{}", None, None, allow_unsigned=True)

    def test_url_validation(self):
        response = url_validation_response("s3cret", "plain")
        assert response["plainToken"] == "plain"
        assert response["encryptedToken"] == hmac.new(
            b"s3cret", b"plain", hashlib.sha256
        ).hexdigest()


class TestWebhookHandler:
    """Test meeting lifecycle updates"""

    @pytest_asyncio.fixture
    async def meeting_event(self, db, make_user):
        creator = await make_user(role=Role.INSTRUCTOR)
        student = await make_user(email="learner@example.com")
        event = CalendarEvent(
            title="Lecture",
            start_time=START,
            end_time=START + timedelta(hours=1),
            created_by_id=creator.id,
            zoom_meeting_id="8123",
        )
        db.add(event)
        await db.flush()
        db.add(EventAttendee(event_id=event.id, user_id=student.id))
        await db.commit()
        return event

    @pytest.mark.asyncio
    async def test_started_and_ended(self, db, meeting_event):
        handler = ZoomWebhookHandler(db)
        payload = {"event": "meeting.started", "payload": {"object": {"id": 8123}}}

        assert await handler.handle(payload) == "status_updated"
        await db.refresh(meeting_event)
        assert meeting_event.status == "IN_PROGRESS"

        payload["event"] = "meeting.ended"
        await handler.handle(payload)
        await db.refresh(meeting_event)
        assert meeting_event.status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_participant_joined_marks_attendance(self, db, meeting_event):
        joined = datetime(2025, 1, 6, 10, 3)
        payload = {
            "event": "meeting.participant_joined",
            "payload": {"object": {"id": "8123", "participant": {"email": "Learner@Example.com"}}},
        }

        assert await ZoomWebhookHandler(db).handle(payload, joined) == "attendance_marked"

        attendee = (await db.execute(
            EventAttendee.__table__.select().where(EventAttendee.event_id == meeting_event.id)
        )).one()
        assert attendee.attendance_marked is True
        assert attendee.joined_at == joined

    @pytest.mark.asyncio
    async def test_mixed_case_stored_email_matches(self, db, meeting_event, make_user):
        legacy = await make_user(email="Ada.Lovelace@Example.com")
        db.add(EventAttendee(event_id=meeting_event.id, user_id=legacy.id))
        await db.commit()
        payload = {
            "event": "meeting.participant_joined",
            "payload": {"object": {"id": "8123", "participant": {"email": "ada.lovelace@example.com"}}},
        }

        assert await ZoomWebhookHandler(db).handle(payload) == "attendance_marked"

        attendee = (await db.execute(
            EventAttendee.__table__.select().where(EventAttendee.user_id == legacy.id)
        )).one()
        assert attendee.attendance_marked is True

    @pytest.mark.asyncio
    async def test_unknown_participant_ignored(self, db, meeting_event):
        payload = {
            "event": "meeting.participant_left",
            "payload": {"object": {"id": "8123", "participant": {"email": "nobody@example.com"}}},
        }
        assert await ZoomWebhookHandler(db).handle(payload) == "ignored"

    @pytest.mark.asyncio
    async def test_unhandled_event_ignored(self, db):
        assert await ZoomWebhookHandler(db).handle({"event": "recording.completed"}) == "ignored"

    @pytest.mark.asyncio
    async def test_missing_meeting_id(self, db):
        with pytest.raises(ValidationException):
            await ZoomWebhookHandler(db).handle({"event": "meeting.started", "payload": {}})
