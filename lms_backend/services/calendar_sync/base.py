"""
Calendar Sync Base Classes
Abstract interface for external calendar providers
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class CalendarProvider(str, Enum):
    GOOGLE = "GOOGLE"
    OUTLOOK = "OUTLOOK"


class SyncDirection(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    BOTH = "both"

    @property
    def imports(self) -> bool:
        return self in (SyncDirection.IMPORT, SyncDirection.BOTH)

    @property
    def exports(self) -> bool:
        return self in (SyncDirection.EXPORT, SyncDirection.BOTH)


class ExternalEvent(BaseModel):
    """
    Provider-neutral event

    Times are naive UTC. All-day events start at midnight; their end is the
    last second of the final day.
    """

    external_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False


class TokenGrant(BaseModel):
    """Result of an OAuth refresh"""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600


class CalendarSyncProvider(ABC):
    """
    Abstract base class for external calendar providers

    Implementations raise CalendarSyncException on any failure.
    """

    @property
    @abstractmethod
    def provider(self) -> CalendarProvider:
        """Return the provider this client talks to"""
        pass

    @abstractmethod
    async def list_events(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        calendar_id: Optional[str] = None,
    ) -> List[ExternalEvent]:
        """
        List events starting inside a window

        Args:
            access_token: OAuth bearer token of the calendar owner
            time_min: Window start (naive UTC)
            time_max: Window end (naive UTC)
            calendar_id: Provider calendar id (primary calendar if None)

        Returns:
            Events ordered by start time; recurring events are expanded
        """
        pass

    @abstractmethod
    async def create_event(
        self,
        access_token: str,
        event: ExternalEvent,
        calendar_id: Optional[str] = None,
    ) -> str:
        """Create an event and return its provider-side id"""
        pass

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token"""
        pass

    async def close(self) -> None:
        """Release provider resources"""
        pass
