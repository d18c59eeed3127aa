"""
Calendar Sync Service
Two-way sync between calendar events and a user's external calendars

This service provides:
- Integration setup, listing and removal
- Import of external events into the user's own calendar
- Export of the user's events that have no external copy yet
- A batch run over every active integration

Imports are committed before export starts; each exported event's link is
committed as soon as the provider accepts it, so a failed run never loses
track of copies it already made.
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.core.config import settings
from lms_backend.core.exceptions import (
    AuthorizationException,
    CalendarSyncException,
    NotFoundException,
    ValidationException,
)
from lms_backend.core.logging import get_logger
from lms_backend.core.permissions import PermissionManager, PermissionSet
from lms_backend.db.models import CalendarEvent, CalendarIntegration, ExternalEventLink
from lms_backend.services.audit import AuditSink
from lms_backend.services.calendar.models import EventStatus, EventType
from lms_backend.services.calendar_sync.base import (
    CalendarProvider,
    CalendarSyncProvider,
    ExternalEvent,
    SyncDirection,
)
from lms_backend.services.calendar_sync.models import (
    IntegrationDetails,
    IntegrationSetup,
    SyncResult,
)

logger = get_logger(__name__)

ENTITY_TYPE = "CalendarIntegration"

STATUS_ACTIVE = "active"
STATUS_ERROR = "error"

SYNCED_FIELDS = ("title", "description", "location", "start_time", "end_time", "all_day")

ProviderFactory = Callable[[CalendarProvider], CalendarSyncProvider]


def _window_is_valid(event: ExternalEvent) -> bool:
    if event.all_day:
        return event.end_time >= event.start_time
    return event.end_time > event.start_time


def _apply(row: CalendarEvent, event: ExternalEvent) -> bool:
    """Copy external fields onto a row; True if anything changed"""
    changed = False
    for field in SYNCED_FIELDS:
        value = getattr(event, field)
        if getattr(row, field, None) != value:
            setattr(row, field, value)
            changed = True
    return changed


def _to_external(row: CalendarEvent) -> ExternalEvent:
    return ExternalEvent(
        title=row.title,
        description=row.description,
        location=row.location,
        start_time=row.start_time,
        end_time=row.end_time,
        all_day=row.all_day,
    )


class CalendarSyncService:
    """
    External calendar sync for one request

    Example:
        ```python
        service = CalendarSyncService(db, providers=get_sync_provider, audit=audit_sink)
        result = await service.sync(actor, CalendarProvider.GOOGLE, SyncDirection.IMPORT)
        ```
    """

    def __init__(
        self,
        db: AsyncSession,
        providers: ProviderFactory,
        audit: Optional[AuditSink] = None,
    ):
        """
        Initialize the sync service

        Args:
            db: Database session
            providers: Returns the client for a provider
            audit: Audit sink (auditing is skipped if None)
        """
        self.db = db
        self.providers = providers
        self.audit = audit

    # ========================================================================
    # Helpers
    # ========================================================================

    def _require_view(self, actor: PermissionSet) -> None:
        if not PermissionManager.can_view_calendar(actor):
            logger.warning(f"User {actor.user_id} denied calendar sync: missing CALENDAR_VIEW")
            raise AuthorizationException(message="Calendar access denied")

    def _require_manage(self, actor: PermissionSet) -> None:
        if not PermissionManager.can_manage_calendar(actor):
            logger.warning(f"User {actor.user_id} denied calendar sync: missing CALENDAR_MANAGE")
            raise AuthorizationException(message="Insufficient permissions to sync events")

    async def _find(
        self, user_id: uuid.UUID, provider: CalendarProvider
    ) -> Optional[CalendarIntegration]:
        result = await self.db.execute(
            select(CalendarIntegration).where(
                CalendarIntegration.user_id == user_id,
                CalendarIntegration.provider == provider.value,
            )
        )
        return result.scalar_one_or_none()

    async def _get(self, user_id: uuid.UUID, provider: CalendarProvider) -> CalendarIntegration:
        integration = await self._find(user_id, provider)
        if integration is None:
            raise NotFoundException(
                "Calendar integration", details={"provider": provider.value}
            )
        return integration

    async def _audit(
        self, actor: PermissionSet, action: str, integration_id: uuid.UUID, metadata: dict
    ) -> None:
        if self.audit is not None:
            await self.audit.record(actor.user_id, action, ENTITY_TYPE, str(integration_id), metadata)

    # ========================================================================
    # Integrations
    # ========================================================================

    async def setup_integration(
        self, actor: PermissionSet, setup: IntegrationSetup
    ) -> IntegrationDetails:
        """
        Store tokens for a provider, replacing any earlier setup

        Re-running setup re-enables a disabled or failed integration.
        """
        self._require_view(actor)

        integration = await self._find(actor.user_id, setup.provider)
        if integration is None:
            integration = CalendarIntegration(user_id=actor.user_id, provider=setup.provider.value)
            self.db.add(integration)

        integration.access_token = setup.access_token
        integration.refresh_token = setup.refresh_token
        integration.token_expiry = setup.token_expiry
        integration.provider_user_id = setup.provider_user_id
        integration.calendar_id = setup.calendar_id
        integration.sync_direction = setup.sync_direction.value
        integration.sync_enabled = True
        integration.sync_status = STATUS_ACTIVE
        await self.db.commit()

        logger.info(f"User {actor.user_id} connected {setup.provider.value} calendar")
        await self._audit(
            actor, "SETUP_CALENDAR_SYNC", integration.id, {"provider": setup.provider.value}
        )
        return IntegrationDetails.model_validate(integration)

    async def list_integrations(self, actor: PermissionSet) -> List[IntegrationDetails]:
        self._require_view(actor)
        result = await self.db.execute(
            select(CalendarIntegration)
            .where(CalendarIntegration.user_id == actor.user_id)
            .order_by(CalendarIntegration.provider)
        )
        return [IntegrationDetails.model_validate(i) for i in result.scalars().all()]

    async def remove_integration(self, actor: PermissionSet, provider: CalendarProvider) -> None:
        """Disconnect a provider; external copies stay where they are"""
        self._require_view(actor)
        integration = await self._get(actor.user_id, provider)
        integration_id = integration.id

        await self.db.execute(
            delete(ExternalEventLink).where(ExternalEventLink.integration_id == integration_id)
        )
        await self.db.delete(integration)
        await self.db.commit()

        logger.info(f"User {actor.user_id} disconnected {provider.value} calendar")
        await self._audit(actor, "REMOVE_CALENDAR_SYNC", integration_id, {"provider": provider.value})

    # ========================================================================
    # Sync
    # ========================================================================

    async def sync(
        self,
        actor: PermissionSet,
        provider: CalendarProvider,
        direction: Optional[SyncDirection] = None,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """
        Sync the actor's calendar with one provider

        Args:
            actor: Calling principal; needs calendar-manage
            provider: Which integration to run
            direction: import, export or both (integration default if None)
            now: Reference time for the import window and token expiry

        Raises:
            NotFoundException: No integration for this provider
            ValidationException: Integration is disabled
            CalendarSyncException: Provider call failed; the integration is marked "error"
        """
        self._require_manage(actor)
        integration = await self._get(actor.user_id, provider)
        if not integration.sync_enabled:
            raise ValidationException(
                message="Calendar sync is disabled", details={"provider": provider.value}
            )

        direction = direction or SyncDirection(integration.sync_direction)
        result = await self._run(integration, direction, now or datetime.utcnow())

        await self._audit(actor, "SYNC_CALENDAR", integration.id, result.model_dump(mode="json"))
        return result

    async def sync_all(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """
        Run every enabled, healthy integration in its own direction

        Returns:
            (succeeded, failed)
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(CalendarIntegration.id).where(
                CalendarIntegration.sync_enabled.is_(True),
                CalendarIntegration.sync_status == STATUS_ACTIVE,
            )
        )
        integration_ids = list(result.scalars().all())

        succeeded = failed = 0
        for integration_id in integration_ids:
            integration = await self.db.get(CalendarIntegration, integration_id)
            try:
                await self._run(integration, SyncDirection(integration.sync_direction), now)
                succeeded += 1
            except CalendarSyncException as e:
                logger.error(f"Calendar sync failed for integration {integration_id}: {e.message}")
                failed += 1

        logger.info(f"Calendar batch sync finished: {succeeded} succeeded, {failed} failed")
        return succeeded, failed

    async def _run(
        self, integration: CalendarIntegration, direction: SyncDirection, now: datetime
    ) -> SyncResult:
        integration_id = integration.id
        provider = CalendarProvider(integration.provider)
        client = self.providers(provider)
        result = SyncResult(provider=provider, direction=direction)

        try:
            token = await self._access_token(client, integration, now)
            if direction.imports:
                await self._import(client, integration, token, now, result)
            if direction.exports:
                await self._export(client, integration, token, result)
        except CalendarSyncException:
            await self.db.rollback()
            await self.db.execute(
                update(CalendarIntegration)
                .where(CalendarIntegration.id == integration_id)
                .values(sync_status=STATUS_ERROR)
            )
            await self.db.commit()
            logger.warning(f"Integration {integration_id} ({provider.value}) marked as failed")
            raise

        integration.last_sync_at = now
        integration.sync_status = STATUS_ACTIVE
        await self.db.commit()

        logger.info(
            f"Synced {provider.value} for user {integration.user_id}: "
            f"{result.imported} imported, {result.updated} updated, "
            f"{result.exported} exported, {result.skipped} skipped"
        )
        return result

    async def _access_token(
        self, client: CalendarSyncProvider, integration: CalendarIntegration, now: datetime
    ) -> str:
        if integration.token_expiry is None or now < integration.token_expiry:
            return integration.access_token

        if not integration.refresh_token:
            raise CalendarSyncException(
                "Access token expired and no refresh token is stored",
                provider=integration.provider,
            )

        grant = await client.refresh_access_token(integration.refresh_token)
        integration.access_token = grant.access_token
        if grant.refresh_token:
            integration.refresh_token = grant.refresh_token
        integration.token_expiry = now + timedelta(seconds=grant.expires_in)
        await self.db.commit()

        logger.info(f"Refreshed {integration.provider} token for user {integration.user_id}")
        return grant.access_token

    async def _links(self, integration_id: uuid.UUID) -> Dict[str, uuid.UUID]:
        """external id -> event id"""
        result = await self.db.execute(
            select(ExternalEventLink).where(ExternalEventLink.integration_id == integration_id)
        )
        return {link.external_id: link.event_id for link in result.scalars().all()}

    async def _import(
        self,
        client: CalendarSyncProvider,
        integration: CalendarIntegration,
        token: str,
        now: datetime,
        result: SyncResult,
    ) -> None:
        time_min = now - relativedelta(months=settings.CALENDAR_SYNC_PAST_MONTHS)
        time_max = now + relativedelta(months=settings.CALENDAR_SYNC_FUTURE_MONTHS)
        external = await client.list_events(token, time_min, time_max, integration.calendar_id)
        links = await self._links(integration.id)

        for event in external:
            if not _window_is_valid(event):
                logger.warning(f"Skipping external event {event.external_id}: invalid time window")
                result.skipped += 1
                continue

            row = None
            if event.external_id in links:
                row = await self.db.get(CalendarEvent, links[event.external_id])

            if row is None:
                if event.external_id in links:
                    # Linked event was deleted locally; recreate it
                    await self.db.execute(
                        delete(ExternalEventLink).where(
                            ExternalEventLink.integration_id == integration.id,
                            ExternalEventLink.external_id == event.external_id,
                        )
                    )
                row = CalendarEvent(
                    type=EventType.MEETING.value,
                    status=EventStatus.SCHEDULED.value,
                    created_by_id=integration.user_id,
                )
                _apply(row, event)
                self.db.add(row)
                await self.db.flush()
                self.db.add(
                    ExternalEventLink(
                        integration_id=integration.id,
                        event_id=row.id,
                        external_id=event.external_id,
                    )
                )
                result.imported += 1
            elif _apply(row, event):
                result.updated += 1

        await self.db.commit()

    async def _export(
        self,
        client: CalendarSyncProvider,
        integration: CalendarIntegration,
        token: str,
        result: SyncResult,
    ) -> None:
        linked = select(ExternalEventLink.event_id).where(
            ExternalEventLink.integration_id == integration.id
        )
        rows = await self.db.execute(
            select(CalendarEvent)
            .where(
                CalendarEvent.created_by_id == integration.user_id,
                CalendarEvent.status != EventStatus.CANCELLED.value,
                CalendarEvent.id.not_in(linked),
            )
            .order_by(CalendarEvent.start_time, CalendarEvent.id)
        )

        for row in rows.scalars().all():
            external_id = await client.create_event(token, _to_external(row), integration.calendar_id)
            self.db.add(
                ExternalEventLink(
                    integration_id=integration.id, event_id=row.id, external_id=external_id
                )
            )
            await self.db.commit()
            result.exported += 1
