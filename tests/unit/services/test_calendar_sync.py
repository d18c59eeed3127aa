#!/usr/bin/env python3
"""
Unit Tests for Calendar Sync Service
Tests for lms_backend/services/calendar_sync/service.py
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select

from lms_backend.core.exceptions import (
    AuthorizationException,
    CalendarSyncException,
    NotFoundException,
    ValidationException,
)
from lms_backend.core.permissions import Role
from lms_backend.db.models import CalendarEvent, CalendarIntegration, ExternalEventLink
from lms_backend.services.calendar import CalendarService
from lms_backend.services.calendar_sync import (
    CalendarProvider,
    CalendarSyncProvider,
    CalendarSyncService,
    ExternalEvent,
    IntegrationSetup,
    SyncDirection,
    TokenGrant,
)

NOW = datetime(2025, 3, 1, 12, 0)
HOUR = timedelta(hours=1)


def external(external_id: str, start: datetime = NOW + timedelta(days=2), **kwargs) -> ExternalEvent:
    fields = {
        "external_id": external_id,
        "title": f"External {external_id}",
        "start_time": start,
        "end_time": start + HOUR,
    }
    fields.update(kwargs)
    return ExternalEvent(**fields)


class FakeCalendarProvider(CalendarSyncProvider):
    """In-memory external calendar; ``fail`` names operations that raise"""

    def __init__(self, events: Optional[List[ExternalEvent]] = None):
        self.events = list(events or [])
        self.fail = set()
        self.created: List[ExternalEvent] = []
        self.tokens_used: List[str] = []
        self.windows: List[tuple] = []
        self.refreshed: List[str] = []
        self.grant = TokenGrant(access_token="fresh-token", refresh_token="rotated", expires_in=3600)

    @property
    def provider(self) -> CalendarProvider:
        return CalendarProvider.GOOGLE

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail:
            raise CalendarSyncException(f"{operation} unavailable", provider="GOOGLE")

    async def list_events(self, access_token, time_min, time_max, calendar_id=None):
        self._maybe_fail("list")
        self.tokens_used.append(access_token)
        self.windows.append((time_min, time_max))
        return list(self.events)

    async def create_event(self, access_token, event, calendar_id=None) -> str:
        self._maybe_fail("create")
        self.tokens_used.append(access_token)
        self.created.append(event)
        return f"exported-{len(self.created)}"

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        self._maybe_fail("refresh")
        self.refreshed.append(refresh_token)
        return self.grant


@pytest.fixture
def provider() -> FakeCalendarProvider:
    return FakeCalendarProvider()


@pytest.fixture
def service(db, provider, audit) -> CalendarSyncService:
    return CalendarSyncService(db, providers=lambda _: provider, audit=audit)


@pytest_asyncio.fixture
async def instructor(make_user):
    return await make_user(Role.INSTRUCTOR)


@pytest_asyncio.fixture
async def connected(service, instructor, perms):
    """Instructor with a Google integration; returns their permission set"""
    actor = await perms(instructor)
    await service.setup_integration(
        actor, IntegrationSetup(provider=CalendarProvider.GOOGLE, access_token="token-1")
    )
    return actor


async def links(db) -> Dict[str, object]:
    result = await db.execute(select(ExternalEventLink))
    return {link.external_id: link.event_id for link in result.scalars().all()}


async def integration_row(db, user_id) -> CalendarIntegration:
    result = await db.execute(
        select(CalendarIntegration)
        .where(CalendarIntegration.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestIntegrations:
    """Test integration setup and removal"""

    @pytest.mark.asyncio
    async def test_setup_creates_integration(self, service, make_user, perms, audit):
        student = await make_user(Role.STUDENT)
        actor = await perms(student)

        details = await service.setup_integration(
            actor,
            IntegrationSetup(
                provider=CalendarProvider.OUTLOOK,
                access_token="token",
                calendar_id="work",
                sync_direction=SyncDirection.IMPORT,
            ),
        )

        assert details.provider == CalendarProvider.OUTLOOK
        assert details.calendar_id == "work"
        assert details.sync_direction == SyncDirection.IMPORT
        assert details.sync_status == "active"
        assert details.last_sync_at is None
        audit.record.assert_awaited_once()
        assert audit.record.call_args.args[1] == "SETUP_CALENDAR_SYNC"

    @pytest.mark.asyncio
    async def test_setup_again_replaces_tokens(self, service, connected, db):
        details = await service.setup_integration(
            connected,
            IntegrationSetup(
                provider=CalendarProvider.GOOGLE, access_token="token-2", refresh_token="r"
            ),
        )

        rows = (await db.execute(select(CalendarIntegration))).scalars().all()
        assert len(rows) == 1
        assert rows[0].id == details.id
        assert rows[0].access_token == "token-2"
        assert rows[0].refresh_token == "r"

    @pytest.mark.asyncio
    async def test_list_only_own(self, service, connected, make_user, perms):
        other = await perms(await make_user(Role.STUDENT))
        await service.setup_integration(
            other, IntegrationSetup(provider=CalendarProvider.OUTLOOK, access_token="x")
        )

        mine = await service.list_integrations(connected)

        assert [i.provider for i in mine] == [CalendarProvider.GOOGLE]

    @pytest.mark.asyncio
    async def test_remove_deletes_links(self, service, connected, provider, db):
        provider.events = [external("g-1")]
        await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        await service.remove_integration(connected, CalendarProvider.GOOGLE)

        assert await service.list_integrations(connected) == []
        assert await links(db) == {}
        # Imported events stay in the calendar
        assert len((await db.execute(select(CalendarEvent))).scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_remove_unknown(self, service, connected):
        with pytest.raises(NotFoundException):
            await service.remove_integration(connected, CalendarProvider.OUTLOOK)

    @pytest.mark.asyncio
    async def test_view_capability_required(self, service, make_user, perms, grant):
        student = await make_user(Role.STUDENT)
        await grant(student, "CALENDAR_VIEW", granted=False)

        with pytest.raises(AuthorizationException):
            await service.list_integrations(await perms(student))


class TestImport:
    """Test pulling external events in"""

    @pytest.mark.asyncio
    async def test_creates_events_and_links(self, service, connected, provider, db, instructor):
        provider.events = [
            external("g-1", location="Room 4"),
            external("g-2", start=NOW + timedelta(days=3), description="Bring notes"),
        ]

        result = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        assert (result.imported, result.updated, result.exported) == (2, 0, 0)
        rows = (
            await db.execute(select(CalendarEvent).order_by(CalendarEvent.start_time))
        ).scalars().all()
        assert [r.title for r in rows] == ["External g-1", "External g-2"]
        assert rows[0].location == "Room 4"
        assert rows[1].description == "Bring notes"
        assert all(r.created_by_id == instructor.id for r in rows)
        assert all((r.type, r.status) == ("MEETING", "SCHEDULED") for r in rows)
        assert await links(db) == {"g-1": rows[0].id, "g-2": rows[1].id}

    @pytest.mark.asyncio
    async def test_window_spans_past_and_future(self, service, connected, provider):
        await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        assert provider.windows == [(datetime(2025, 2, 1, 12, 0), datetime(2025, 9, 1, 12, 0))]

    @pytest.mark.asyncio
    async def test_rerun_updates_changed_events_only(self, service, connected, provider, db):
        provider.events = [external("g-1"), external("g-2")]
        await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        provider.events = [external("g-1", title="Moved"), external("g-2")]
        result = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        assert (result.imported, result.updated) == (0, 1)
        titles = (await db.execute(select(CalendarEvent.title))).scalars().all()
        assert sorted(titles) == ["External g-2", "Moved"]

    @pytest.mark.asyncio
    async def test_locally_deleted_event_recreated(self, service, connected, provider, db):
        provider.events = [external("g-1")]
        await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)
        first_id = (await links(db))["g-1"]
        await db.delete(await db.get(CalendarEvent, first_id))
        await db.commit()

        result = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        assert result.imported == 1
        current = await links(db)
        assert list(current) == ["g-1"]
        assert current["g-1"] != first_id

    @pytest.mark.asyncio
    async def test_invalid_window_skipped(self, service, connected, provider, db):
        provider.events = [
            external("bad", end_time=NOW + timedelta(days=2)),
            external("all-day", start=NOW, end_time=NOW, all_day=True),
        ]

        result = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        assert (result.imported, result.skipped) == (1, 1)
        assert list(await links(db)) == ["all-day"]


class TestExport:
    """Test pushing local events out"""

    async def _own_event(self, db, user, title: str, start: datetime, status: str = "SCHEDULED"):
        row = CalendarEvent(
            title=title, start_time=start, end_time=start + HOUR,
            status=status, created_by_id=user.id,
        )
        db.add(row)
        await db.commit()
        return row

    @pytest.mark.asyncio
    async def test_pushes_unlinked_events_once(self, service, connected, provider, db, instructor):
        later = await self._own_event(db, instructor, "Later", NOW + timedelta(days=5))
        sooner = await self._own_event(db, instructor, "Sooner", NOW + timedelta(days=1))
        await self._own_event(db, instructor, "Called off", NOW, status="CANCELLED")

        result = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.EXPORT, now=NOW)

        assert result.exported == 2
        assert [e.title for e in provider.created] == ["Sooner", "Later"]
        assert await links(db) == {"exported-1": sooner.id, "exported-2": later.id}

        again = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.EXPORT, now=NOW)
        assert again.exported == 0

    @pytest.mark.asyncio
    async def test_other_users_events_not_pushed(self, service, connected, provider, db, make_user):
        other = await make_user(Role.INSTRUCTOR)
        await self._own_event(db, other, "Not mine", NOW)

        result = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.EXPORT, now=NOW)

        assert result.exported == 0
        assert provider.created == []

    @pytest.mark.asyncio
    async def test_imported_events_not_pushed_back(self, service, connected, provider):
        provider.events = [external("g-1")]

        result = await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.BOTH, now=NOW)

        assert (result.imported, result.exported) == (1, 0)

    @pytest.mark.asyncio
    async def test_default_direction_from_integration(self, service, make_user, perms, provider):
        actor = await perms(await make_user(Role.INSTRUCTOR))
        await service.setup_integration(
            actor,
            IntegrationSetup(
                provider=CalendarProvider.GOOGLE,
                access_token="t",
                sync_direction=SyncDirection.IMPORT,
            ),
        )

        result = await service.sync(actor, CalendarProvider.GOOGLE, now=NOW)

        assert result.direction == SyncDirection.IMPORT
        assert provider.windows


class TestSyncRun:
    """Test tokens, status and permissions around a run"""

    @pytest.mark.asyncio
    async def test_success_records_last_sync(self, service, connected, db, audit):
        await service.sync(connected, CalendarProvider.GOOGLE, now=NOW)

        row = await integration_row(db, connected.user_id)
        assert row.last_sync_at == NOW
        assert row.sync_status == "active"
        assert audit.record.call_args.args[1] == "SYNC_CALENDAR"

    @pytest.mark.asyncio
    async def test_student_cannot_sync(self, service, make_user, perms):
        actor = await perms(await make_user(Role.STUDENT))
        await service.setup_integration(
            actor, IntegrationSetup(provider=CalendarProvider.GOOGLE, access_token="t")
        )

        with pytest.raises(AuthorizationException):
            await service.sync(actor, CalendarProvider.GOOGLE, now=NOW)

    @pytest.mark.asyncio
    async def test_missing_integration(self, service, instructor, perms):
        with pytest.raises(NotFoundException):
            await service.sync(await perms(instructor), CalendarProvider.OUTLOOK, now=NOW)

    @pytest.mark.asyncio
    async def test_disabled_integration_rejected(self, service, connected, db, provider):
        row = await integration_row(db, connected.user_id)
        row.sync_enabled = False
        await db.commit()

        with pytest.raises(ValidationException):
            await service.sync(connected, CalendarProvider.GOOGLE, now=NOW)
        assert provider.windows == []

    @pytest.mark.asyncio
    async def test_valid_token_not_refreshed(self, service, make_user, perms, provider):
        actor = await perms(await make_user(Role.INSTRUCTOR))
        await service.setup_integration(
            actor,
            IntegrationSetup(
                provider=CalendarProvider.GOOGLE,
                access_token="still-good",
                refresh_token="r",
                token_expiry=NOW + HOUR,
            ),
        )

        await service.sync(actor, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        assert provider.refreshed == []
        assert provider.tokens_used == ["still-good"]

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_and_stored(self, service, make_user, perms, provider, db):
        actor = await perms(await make_user(Role.INSTRUCTOR))
        await service.setup_integration(
            actor,
            IntegrationSetup(
                provider=CalendarProvider.GOOGLE,
                access_token="stale",
                refresh_token="refresh-1",
                token_expiry=NOW - HOUR,
            ),
        )

        await service.sync(actor, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)

        assert provider.refreshed == ["refresh-1"]
        assert provider.tokens_used == ["fresh-token"]
        row = await integration_row(db, actor.user_id)
        assert row.access_token == "fresh-token"
        assert row.refresh_token == "rotated"
        assert row.token_expiry == NOW + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_fails(self, service, make_user, perms, db):
        actor = await perms(await make_user(Role.INSTRUCTOR))
        await service.setup_integration(
            actor,
            IntegrationSetup(
                provider=CalendarProvider.GOOGLE, access_token="stale", token_expiry=NOW - HOUR
            ),
        )

        with pytest.raises(CalendarSyncException):
            await service.sync(actor, CalendarProvider.GOOGLE, now=NOW)

        row = await integration_row(db, actor.user_id)
        assert row.sync_status == "error"

    @pytest.mark.asyncio
    async def test_provider_failure_marks_error_and_keeps_imports(
        self, service, connected, provider, db, instructor
    ):
        user_id = connected.user_id
        provider.events = [external("g-1")]
        db.add(
            CalendarEvent(
                title="Mine", start_time=NOW, end_time=NOW + HOUR, created_by_id=instructor.id
            )
        )
        await db.commit()
        provider.fail.add("create")

        with pytest.raises(CalendarSyncException):
            await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.BOTH, now=NOW)

        row = await integration_row(db, user_id)
        assert row.sync_status == "error"
        assert row.last_sync_at is None
        assert list(await links(db)) == ["g-1"]


class TestSyncAll:
    """Test the batch run"""

    @pytest.mark.asyncio
    async def test_runs_healthy_integrations(self, service, make_user, perms, provider, db):
        healthy = await perms(await make_user(Role.INSTRUCTOR))
        broken = await perms(await make_user(Role.INSTRUCTOR))
        disabled = await perms(await make_user(Role.INSTRUCTOR))
        for actor in (healthy, broken, disabled):
            await service.setup_integration(
                actor, IntegrationSetup(provider=CalendarProvider.GOOGLE, access_token="t")
            )
        (await integration_row(db, broken.user_id)).sync_status = "error"
        (await integration_row(db, disabled.user_id)).sync_enabled = False
        await db.commit()

        succeeded, failed = await service.sync_all(now=NOW)

        assert (succeeded, failed) == (1, 0)
        assert (await integration_row(db, healthy.user_id)).last_sync_at == NOW
        assert (await integration_row(db, broken.user_id)).last_sync_at is None

    @pytest.mark.asyncio
    async def test_failure_counted_and_marked(self, service, connected, provider, db):
        provider.fail.add("list")

        succeeded, failed = await service.sync_all(now=NOW)

        assert (succeeded, failed) == (0, 1)
        assert (await integration_row(db, connected.user_id)).sync_status == "error"


class TestEventDeletion:
    """Test link cleanup when the calendar service deletes events"""

    @pytest.mark.asyncio
    async def test_deleting_event_drops_its_link(self, service, connected, provider, db, locks):
        provider.events = [external("g-1"), external("g-2")]
        await service.sync(connected, CalendarProvider.GOOGLE, SyncDirection.IMPORT, now=NOW)
        event_id = (await links(db))["g-1"]

        await CalendarService(db, locks=locks).delete_event(connected, event_id)

        assert list(await links(db)) == ["g-2"]
