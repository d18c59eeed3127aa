"""
REST Calendar Client
aiohttp plumbing shared by the Google Calendar and Microsoft Graph clients
"""

from typing import Any, Dict, Optional

import aiohttp

from lms_backend.core.exceptions import CalendarSyncException
from lms_backend.core.logging import get_logger
from lms_backend.services.calendar_sync.base import CalendarSyncProvider, TokenGrant

logger = get_logger(__name__)


class RestCalendarClient(CalendarSyncProvider):
    """
    Bearer-authenticated JSON client with an OAuth refresh helper

    Subclasses set ``api_base`` and ``token_url`` and translate events.
    """

    def __init__(
        self,
        api_base: str,
        token_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        timeout: float,
    ):
        self.api_base = api_base.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug(f"{self.provider.value} calendar session closed")

    def _error(self, message: str, **details: Any) -> CalendarSyncException:
        return CalendarSyncException(message, provider=self.provider.value, details=details)

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        # Paging links come back as absolute URLs
        url = path if path.startswith("http") else f"{self.api_base}{path}"

        try:
            session = await self._get_session()
            async with session.request(
                method,
                url,
                params=params,
                json=payload,
                headers={"Authorization": f"Bearer {access_token}", **(headers or {})},
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise self._error(
                        f"{self.provider.value} {method} {path} failed: HTTP {response.status}",
                        status=response.status,
                        error=error_text,
                    )
                return await response.json()

        except aiohttp.ClientError as e:
            raise self._error(
                f"Failed to connect to {self.provider.value}: {str(e)}",
                error_type=type(e).__name__,
            )

    async def _refresh(self, refresh_token: str, **extra: str) -> TokenGrant:
        if not (self.client_id and self.client_secret):
            raise self._error(f"{self.provider.value} OAuth client is not configured")

        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
            **extra,
        }

        try:
            session = await self._get_session()
            async with session.post(self.token_url, data=form) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise self._error(
                        f"{self.provider.value} token refresh failed: HTTP {response.status}",
                        status=response.status,
                        error=error_text,
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise self._error(
                f"Failed to connect to {self.provider.value}: {str(e)}",
                error_type=type(e).__name__,
            )

        logger.debug(f"{self.provider.value} access token refreshed")
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in", 3600)),
        )
