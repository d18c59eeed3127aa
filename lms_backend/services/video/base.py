"""
Video Conference Base Classes
Abstract interface for meeting providers linked to calendar events
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class MeetingDetails(BaseModel):
    """
    Meeting created by a provider

    Attributes:
        meeting_id: Provider-side meeting id
        join_url: URL for participants
        start_url: URL for the host
        password: Meeting passcode, if the provider issued one
    """

    meeting_id: str
    join_url: str
    start_url: Optional[str] = None
    password: Optional[str] = None


class VideoConferenceProvider(ABC):
    """
    Abstract base class for video-conference providers

    Every call may fail independently; implementations raise
    VideoConferenceException and callers decide whether that is fatal.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name"""
        pass

    @abstractmethod
    async def create_meeting(
        self,
        start_time: datetime,
        end_time: datetime,
        title: str,
        description: Optional[str] = None,
    ) -> MeetingDetails:
        """
        Create a scheduled meeting for a time window

        Args:
            start_time: Meeting start (naive UTC)
            end_time: Meeting end (naive UTC)
            title: Meeting topic
            description: Optional agenda

        Returns:
            MeetingDetails for the new meeting
        """
        pass

    @abstractmethod
    async def update_meeting(self, meeting_id: str, fields: Dict[str, Any]) -> None:
        """
        Update a meeting

        Args:
            meeting_id: Provider-side meeting id
            fields: Changed event fields (title, description, start_time, end_time)
        """
        pass

    @abstractmethod
    async def delete_meeting(self, meeting_id: str) -> None:
        """Delete a meeting; an already missing meeting is not an error"""
        pass

    async def close(self) -> None:
        """Release provider resources"""
        pass
