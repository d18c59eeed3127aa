"""
Outlook Calendar Client
Microsoft Graph calendar events on behalf of a user (OAuth bearer tokens)

API Reference: https://learn.microsoft.com/graph/api/resources/event
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from lms_backend.core.config import settings
from lms_backend.core.logging import get_logger
from lms_backend.services.calendar_sync.base import (
    CalendarProvider,
    ExternalEvent,
    TokenGrant,
)
from lms_backend.services.calendar_sync.client import RestCalendarClient

logger = get_logger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/calendars.readwrite offline_access"

# Graph returns times in the zone named by this header
UTC_PREFERENCE = {"Prefer": 'outlook.timezone="UTC"'}


def _graph_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S")


def _parse_time(value: str) -> datetime:
    # Graph sends seven fractional digits
    return date_parser.isoparse(value.split(".")[0])


def parse_outlook_event(item: Dict[str, Any]) -> ExternalEvent:
    all_day = bool(item.get("isAllDay"))
    end_time = _parse_time(item["end"]["dateTime"])
    if all_day:
        end_time -= timedelta(seconds=1)

    return ExternalEvent(
        external_id=item["id"],
        title=item.get("subject") or "(No title)",
        description=(item.get("body") or {}).get("content") or None,
        location=(item.get("location") or {}).get("displayName") or None,
        start_time=_parse_time(item["start"]["dateTime"]),
        end_time=end_time,
        all_day=all_day,
    )


def to_outlook_event(event: ExternalEvent) -> Dict[str, Any]:
    end_time = event.end_time
    if event.all_day:
        end_time = datetime.combine(event.end_time.date() + timedelta(days=1), datetime.min.time())

    body: Dict[str, Any] = {
        "subject": event.title,
        "start": {"dateTime": _graph_time(event.start_time), "timeZone": "UTC"},
        "end": {"dateTime": _graph_time(end_time), "timeZone": "UTC"},
        "isAllDay": event.all_day,
    }
    if event.description:
        body["body"] = {"contentType": "text", "content": event.description}
    if event.location:
        body["location"] = {"displayName": event.location}
    return body


class OutlookCalendarClient(RestCalendarClient):
    """
    Microsoft Graph calendar HTTP client

    Example:
        ```python
        client = OutlookCalendarClient()
        external_id = await client.create_event(token, event)
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
            api_base=api_base or settings.MICROSOFT_GRAPH_API_BASE,
            token_url=token_url or settings.MICROSOFT_OAUTH_TOKEN_URL,
            client_id=client_id or settings.MICROSOFT_CLIENT_ID,
            client_secret=client_secret or settings.MICROSOFT_CLIENT_SECRET,
            timeout=timeout or settings.CALENDAR_SYNC_TIMEOUT_SECONDS,
        )
        logger.info(f"OutlookCalendarClient initialized (api={self.api_base})")

    @property
    def provider(self) -> CalendarProvider:
        return CalendarProvider.OUTLOOK

    def _calendar_path(self, calendar_id: Optional[str]) -> str:
        return f"/me/calendars/{calendar_id}" if calendar_id else "/me/calendar"

    async def list_events(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        calendar_id: Optional[str] = None,
    ) -> List[ExternalEvent]:
        # calendarView expands recurring events into occurrences
        path: Optional[str] = f"{self._calendar_path(calendar_id)}/calendarView"
        params: Optional[Dict[str, str]] = {
            "startDateTime": _graph_time(time_min),
            "endDateTime": _graph_time(time_max),
            "$orderby": "start/dateTime",
        }

        events: List[ExternalEvent] = []
        while path:
            data = await self._request(
                "GET", path, access_token, params=params, headers=UTC_PREFERENCE
            )
            for item in data.get("value", []):
                if item.get("isCancelled"):
                    continue
                events.append(parse_outlook_event(item))

            # nextLink already carries the query
            path, params = data.get("@odata.nextLink"), None

        logger.debug(f"Microsoft Graph returned {len(events)} events")
        return events

    async def create_event(
        self,
        access_token: str,
        event: ExternalEvent,
        calendar_id: Optional[str] = None,
    ) -> str:
        data = await self._request(
            "POST",
            f"{self._calendar_path(calendar_id)}/events",
            access_token,
            payload=to_outlook_event(event),
            headers=UTC_PREFERENCE,
        )
        logger.info(f"Outlook event created: {data['id']}")
        return data["id"]

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        return await self._refresh(refresh_token, scope=GRAPH_SCOPE)
