"""
Calendar Sync Service
Two-way sync with users' Google and Outlook calendars
"""

from typing import Dict

from lms_backend.services.calendar_sync.base import (
    CalendarProvider,
    CalendarSyncProvider,
    ExternalEvent,
    SyncDirection,
    TokenGrant,
)
from lms_backend.services.calendar_sync.google import GoogleCalendarClient
from lms_backend.services.calendar_sync.models import (
    IntegrationDetails,
    IntegrationSetup,
    SyncResult,
)
from lms_backend.services.calendar_sync.outlook import OutlookCalendarClient
from lms_backend.services.calendar_sync.service import CalendarSyncService

# Global singleton instances, one per provider
_sync_providers: Dict[CalendarProvider, CalendarSyncProvider] = {}


def get_sync_provider(provider: CalendarProvider) -> CalendarSyncProvider:
    """
    Get the client for a provider

    Returns:
        GoogleCalendarClient or OutlookCalendarClient singleton
    """
    if provider not in _sync_providers:
        if provider == CalendarProvider.GOOGLE:
            _sync_providers[provider] = GoogleCalendarClient()
        else:
            _sync_providers[provider] = OutlookCalendarClient()

    return _sync_providers[provider]


async def close_sync_providers() -> None:
    for client in _sync_providers.values():
        await client.close()
    _sync_providers.clear()


__all__ = [
    "CalendarProvider",
    "CalendarSyncProvider",
    "CalendarSyncService",
    "ExternalEvent",
    "GoogleCalendarClient",
    "IntegrationDetails",
    "IntegrationSetup",
    "OutlookCalendarClient",
    "SyncDirection",
    "SyncResult",
    "TokenGrant",
    "get_sync_provider",
    "close_sync_providers",
]
