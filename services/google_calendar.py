from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.discovery import build

from core.settings import GOOGLE_SYNC
from datetime_utils import local_day_bounds, local_zone, to_rfc3339_utc
from services.errors import INVALID_REQUEST, NOT_FOUND, TRANSIENT, ProviderError
from services.provider import EventInput, ProviderClient, call_provider


def _build_service(creds) -> Any:
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def _event_time(dt: datetime, tz_name: Optional[str]) -> Dict[str, str]:
    body = {"dateTime": to_rfc3339_utc(dt)}
    if tz_name:
        body["timeZone"] = tz_name
    return body


class GoogleCalendarClient(ProviderClient):
    """Calendar v3 adapter. Each call builds its service from the given credential."""

    resource = "calendar"

    def __init__(
        self,
        calendar_id: str = GOOGLE_SYNC.calendar_id,
        *,
        service_factory: Callable[[Any], Any] = _build_service,
        timezone: Optional[str] = GOOGLE_SYNC.timezone,
    ) -> None:
        self.calendar_id = calendar_id
        self._service_factory = service_factory
        self.timezone = timezone

    def _events(self, credential):
        return self._service_factory(credential).events()

    def _body(self, item: EventInput) -> Dict[str, Any]:
        body: Dict[str, Any] = {"summary": item.summary}
        if item.start is not None and item.end is not None:
            body["start"] = _event_time(item.start, self.timezone)
            body["end"] = _event_time(item.end, self.timezone)
        if item.description is not None:
            body["description"] = item.description
        if item.location is not None:
            body["location"] = item.location
        return body

    # ----- operations -----
    def list_today(self, credential, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        start, end = local_day_bounds(now, local_zone(self.timezone))
        events = self._events(credential)
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params = dict(
                calendarId=self.calendar_id,
                timeMin=start.isoformat(),
                timeMax=end.isoformat(),
                singleEvents=True,
                orderBy="startTime",
                maxResults=250,
            )
            if page_token:
                params["pageToken"] = page_token
            response = call_provider("List calendar events", events.list(**params).execute)
            items.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        # all-day entries carry ``date`` instead of ``dateTime`` and are not time blocks
        return [
            item for item in items
            if not ((item.get("start") or {}).get("date") and not (item.get("start") or {}).get("dateTime"))
        ]

    def create(self, credential, item: EventInput) -> str:
        if item.start is None or item.end is None:
            raise ProviderError(INVALID_REQUEST, "A new calendar event needs a start and an end")
        request = self._events(credential).insert(calendarId=self.calendar_id, body=self._body(item))
        response = call_provider("Create calendar event", request.execute)
        event_id = response.get("id")
        if not event_id:
            raise ProviderError(TRANSIENT, "No event ID returned from Google Calendar")
        return event_id

    def update(self, credential, remote_id: str, item: EventInput) -> str:
        request = self._events(credential).patch(
            calendarId=self.calendar_id, eventId=remote_id, body=self._body(item)
        )
        response = call_provider("Update calendar event", request.execute)
        return response.get("id") or remote_id

    def delete(self, credential, remote_id: str) -> str:
        request = self._events(credential).delete(calendarId=self.calendar_id, eventId=remote_id)
        try:
            call_provider("Delete calendar event", request.execute)
        except ProviderError as exc:
            # already gone
            if exc.kind != NOT_FOUND:
                raise
        return remote_id


__all__ = ["GoogleCalendarClient"]
