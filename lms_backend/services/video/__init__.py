"""
Video Conference Service
Meetings linked to calendar events (Zoom)
"""

from typing import Optional

from lms_backend.core.config import settings
from lms_backend.services.video.base import MeetingDetails, VideoConferenceProvider
from lms_backend.services.video.zoom import ZoomClient

# Global singleton instance
_video_provider: Optional[VideoConferenceProvider] = None


def get_video_provider() -> Optional[VideoConferenceProvider]:
    """
    Get the configured video provider

    Returns:
        ZoomClient singleton, or None when Zoom is not configured
    """
    global _video_provider

    if _video_provider is None and settings.zoom_enabled:
        _video_provider = ZoomClient()

    return _video_provider


async def close_video_provider() -> None:
    global _video_provider

    if _video_provider is not None:
        await _video_provider.close()
        _video_provider = None


__all__ = [
    "MeetingDetails",
    "VideoConferenceProvider",
    "ZoomClient",
    "get_video_provider",
    "close_video_provider",
]
