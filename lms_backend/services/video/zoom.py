"""
Zoom Client
HTTP client for the Zoom meetings API (server-to-server OAuth)

This client handles:
- Access token retrieval and caching
- Scheduled meeting creation
- Meeting updates and deletion

API Reference: https://developers.zoom.us/docs/api/meetings/
"""

import math
import time
from datetime import datetime
from typing import Any, Dict, Optional

import aiohttp

from lms_backend.core.config import settings
from lms_backend.core.exceptions import VideoConferenceException
from lms_backend.core.logging import get_logger
from lms_backend.services.video.base import MeetingDetails, VideoConferenceProvider

logger = get_logger(__name__)

# Refresh the access token this many seconds before Zoom expires it
TOKEN_REFRESH_MARGIN = 60

DEFAULT_MEETING_SETTINGS = {
    "host_video": True,
    "participant_video": True,
    "join_before_host": False,
    "mute_upon_entry": True,
    "waiting_room": True,
    "auto_recording": "none",
    "audio": "both",
}


def _zoom_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _duration_minutes(start_time: datetime, end_time: datetime) -> int:
    return max(1, math.ceil((end_time - start_time).total_seconds() / 60))


class ZoomClient(VideoConferenceProvider):
    """
    Zoom HTTP client

    Example:
        ```python
        client = ZoomClient()
        meeting = await client.create_meeting(start, end, "Office hours")
        await client.delete_meeting(meeting.meeting_id)
        await client.close()
        ```
    """

    def __init__(
        self,
        account_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        oauth_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize Zoom client

        Args:
            account_id: Zoom account id (uses config default if None)
            client_id: OAuth client id
            client_secret: OAuth client secret
            api_base: API base URL
            oauth_url: OAuth token endpoint
            timeout: Total request timeout in seconds
        """
        self.account_id = account_id or settings.ZOOM_ACCOUNT_ID
        self.client_id = client_id or settings.ZOOM_CLIENT_ID
        self.client_secret = client_secret or settings.ZOOM_CLIENT_SECRET
        self.api_base = (api_base or settings.ZOOM_API_BASE).rstrip("/")
        self.oauth_url = oauth_url or settings.ZOOM_OAUTH_URL
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.ZOOM_TIMEOUT_SECONDS)
        self._session: Optional[aiohttp.ClientSession] = None
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

        logger.info(f"ZoomClient initialized (api={self.api_base})")

    @property
    def provider_name(self) -> str:
        return "zoom"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("ZoomClient session closed")

    def _error(self, message: str, **details: Any) -> VideoConferenceException:
        return VideoConferenceException(message, provider=self.provider_name, details=details)

    async def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        if not (self.account_id and self.client_id and self.client_secret):
            raise self._error("Zoom credentials are not configured")

        try:
            session = await self._get_session()
            async with session.post(
                self.oauth_url,
                params={"grant_type": "account_credentials", "account_id": self.account_id},
                auth=aiohttp.BasicAuth(self.client_id, self.client_secret),
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise self._error(
                        f"Zoom OAuth failed: HTTP {response.status}",
                        status=response.status,
                        error=error_text,
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise self._error(f"Failed to connect to Zoom: {str(e)}", error_type=type(e).__name__)

        self._access_token = data["access_token"]
        self._token_expires_at = time.monotonic() + int(data.get("expires_in", 3600)) - TOKEN_REFRESH_MARGIN
        logger.debug("Zoom access token refreshed")
        return self._access_token

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        token = await self._get_access_token()
        url = f"{self.api_base}{path}"

        try:
            session = await self._get_session()
            async with session.request(
                method,
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            ) as response:
                if response.status == 404 and allow_not_found:
                    logger.debug(f"Zoom {method} {path}: already gone")
                    return None

                if response.status >= 400:
                    error_text = await response.text()
                    raise self._error(
                        f"Zoom {method} {path} failed: HTTP {response.status}",
                        status=response.status,
                        error=error_text,
                    )

                if response.status == 204:
                    return None
                return await response.json()

        except aiohttp.ClientError as e:
            raise self._error(f"Failed to connect to Zoom: {str(e)}", error_type=type(e).__name__)

    async def create_meeting(
        self,
        start_time: datetime,
        end_time: datetime,
        title: str,
        description: Optional[str] = None,
    ) -> MeetingDetails:
        payload = {
            "topic": title,
            "type": 2,  # scheduled
            "start_time": _zoom_time(start_time),
            "duration": _duration_minutes(start_time, end_time),
            "timezone": "UTC",
            "agenda": description or "",
            "settings": DEFAULT_MEETING_SETTINGS,
        }

        data = await self._request("POST", "/users/me/meetings", payload)
        meeting = MeetingDetails(
            meeting_id=str(data["id"]),
            join_url=data["join_url"],
            start_url=data.get("start_url"),
            password=data.get("password"),
        )
        logger.info(f"Zoom meeting created: {meeting.meeting_id}")
        return meeting

    async def update_meeting(self, meeting_id: str, fields: Dict[str, Any]) -> None:
        payload: Dict[str, Any] = {}
        if fields.get("title"):
            payload["topic"] = fields["title"]
        if "description" in fields:
            payload["agenda"] = fields["description"] or ""
        if fields.get("start_time"):
            payload["start_time"] = _zoom_time(fields["start_time"])
            if fields.get("end_time"):
                payload["duration"] = _duration_minutes(fields["start_time"], fields["end_time"])

        if not payload:
            return

        await self._request("PATCH", f"/meetings/{meeting_id}", payload)
        logger.info(f"Zoom meeting updated: {meeting_id}")

    async def delete_meeting(self, meeting_id: str) -> None:
        await self._request("DELETE", f"/meetings/{meeting_id}", allow_not_found=True)
        logger.info(f"Zoom meeting deleted: {meeting_id}")
