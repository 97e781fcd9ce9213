from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .models import CalendarEvent, external_source

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


def _graph_datetime(value: str) -> datetime:
    # Graph returns up to seven fractional digits; they are not needed here.
    return datetime.fromisoformat(value.split(".")[0]).replace(tzinfo=timezone.utc)


def outlook_item_to_event(item: Dict[str, Any], calendar_id: str, calendar_name: Optional[str] = None) -> CalendarEvent:
    start = _graph_datetime(item["start"]["dateTime"])
    end_obj = item.get("end") or {}
    end = _graph_datetime(end_obj["dateTime"]) if end_obj.get("dateTime") else start
    location = (item.get("location") or {}).get("displayName") or None
    return CalendarEvent(
        id=str(item.get("id", "")),
        title=item.get("subject") or "No title",
        description=(item.get("body") or {}).get("content") or None,
        location=location,
        start=start,
        end=end,
        all_day=bool(item.get("isAllDay", False)),
        source=external_source("outlook"),
        calendar_id=calendar_id,
        calendar_name=calendar_name or calendar_id,
    )


class OutlookCalendarClient:
    """Reads calendar events from Microsoft Graph with an already-issued access token."""

    def __init__(self, access_token: str, base_url: str = GRAPH_BASE_URL, timeout: int = 15) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Prefer": 'outlook.timezone="UTC"',
            }
        )

    def list_events(self, calendar_id: str, day_start: datetime, day_end: datetime) -> List[Dict[str, Any]]:
        time_min = day_start.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        time_max = day_end.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        url: Optional[str] = f"{self._base_url}/me/calendars/{calendar_id}/events"
        params: Optional[Dict[str, str]] = {
            "$filter": f"start/dateTime ge '{time_min}' and start/dateTime le '{time_max}'",
            "$orderby": "start/dateTime",
        }

        items: List[Dict[str, Any]] = []
        while url:
            resp = self._session.get(url, params=params, timeout=self._timeout)
            resp.raise_for_status()
            payload = resp.json()
            items.extend(payload.get("value", []))
            # nextLink already carries the query string.
            url = payload.get("@odata.nextLink")
            params = None
        return items


def fetch_outlook_events(
    calendar_ids: List[str],
    day_start: datetime,
    day_end: datetime,
    access_token: str,
    client: Optional[OutlookCalendarClient] = None,
) -> List[CalendarEvent]:
    client = client or OutlookCalendarClient(access_token)
    events: List[CalendarEvent] = []
    for cal_id in calendar_ids:
        for item in client.list_events(cal_id, day_start, day_end):
            events.append(outlook_item_to_event(item, cal_id))
    return events
