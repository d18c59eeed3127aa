"""
Google Calendar Client
Calendar API v3 events on behalf of a user (OAuth bearer tokens)

API Reference: https://developers.google.com/calendar/api/v3/reference/events
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from lms_backend.core.config import settings
from lms_backend.core.logging import get_logger
from lms_backend.services.calendar.models import to_naive_utc
from lms_backend.services.calendar_sync.base import (
    CalendarProvider,
    ExternalEvent,
    TokenGrant,
)
from lms_backend.services.calendar_sync.client import RestCalendarClient

logger = get_logger(__name__)

PRIMARY_CALENDAR = "primary"


def _rfc3339(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_boundary(boundary: Dict[str, Any], is_end: bool) -> datetime:
    if boundary.get("dateTime"):
        return to_naive_utc(date_parser.isoparse(boundary["dateTime"]))
    day = datetime.combine(date.fromisoformat(boundary["date"]), datetime.min.time())
    # All-day end dates are exclusive
    return day - timedelta(seconds=1) if is_end else day


def parse_google_event(item: Dict[str, Any]) -> ExternalEvent:
    return ExternalEvent(
        external_id=item["id"],
        title=item.get("summary") or "(No title)",
        description=item.get("description"),
        location=item.get("location"),
        start_time=_parse_boundary(item["start"], is_end=False),
        end_time=_parse_boundary(item["end"], is_end=True),
        all_day=not item["start"].get("dateTime"),
    )


def to_google_event(event: ExternalEvent) -> Dict[str, Any]:
    if event.all_day:
        start = {"date": event.start_time.date().isoformat()}
        end = {"date": (event.end_time.date() + timedelta(days=1)).isoformat()}
    else:
        start = {"dateTime": _rfc3339(event.start_time), "timeZone": "UTC"}
        end = {"dateTime": _rfc3339(event.end_time), "timeZone": "UTC"}

    body: Dict[str, Any] = {"summary": event.title, "start": start, "end": end}
    if event.description:
        body["description"] = event.description
    if event.location:
        body["location"] = event.location
    return body


class GoogleCalendarClient(RestCalendarClient):
    """
    Google Calendar HTTP client

    Example:
        ```python
        client = GoogleCalendarClient()
        events = await client.list_events(token, start, end)
        await client.close()
        ```
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(
            api_base=api_base or settings.GOOGLE_CALENDAR_API_BASE,
            token_url=token_url or settings.GOOGLE_OAUTH_TOKEN_URL,
            client_id=client_id or settings.GOOGLE_CLIENT_ID,
            client_secret=client_secret or settings.GOOGLE_CLIENT_SECRET,
            timeout=timeout or settings.CALENDAR_SYNC_TIMEOUT_SECONDS,
        )
        logger.info(f"GoogleCalendarClient initialized (api={self.api_base})")

    @property
    def provider(self) -> CalendarProvider:
        return CalendarProvider.GOOGLE

    async def list_events(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        calendar_id: Optional[str] = None,
    ) -> List[ExternalEvent]:
        path = f"/calendars/{calendar_id or PRIMARY_CALENDAR}/events"
        params = {
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "singleEvents": "true",
            "orderBy": "startTime",
        }

        events: List[ExternalEvent] = []
        while True:
            data = await self._request("GET", path, access_token, params=params)
            for item in data.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                events.append(parse_google_event(item))

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}

        logger.debug(f"Google Calendar returned {len(events)} events")
        return events

    async def create_event(
        self,
        access_token: str,
        event: ExternalEvent,
        calendar_id: Optional[str] = None,
    ) -> str:
        path = f"/calendars/{calendar_id or PRIMARY_CALENDAR}/events"
        data = await self._request("POST", path, access_token, payload=to_google_event(event))
        logger.info(f"Google Calendar event created: {data['id']}")
        return data["id"]

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        return await self._refresh(refresh_token)
