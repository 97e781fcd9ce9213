from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import os

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from .models import CalendarEvent, external_source

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]
MAX_RESULTS = 2500

def _get_creds(credentials_path: str, token_path: str) -> Credentials:
    if os.path.exists(token_path):
        return Credentials.from_authorized_user_file(token_path, SCOPES)

    flow = InstalledAppFlow.from_client_secrets_file(credentials_path, SCOPES)
    creds = flow.run_local_server(port=0)
    os.makedirs(os.path.dirname(token_path) or ".", exist_ok=True)
    with open(token_path, "w", encoding="utf-8") as f:
        f.write(creds.to_json())
    return creds

def google_item_to_event(item: Dict[str, Any], calendar_id: str, calendar_name: Optional[str] = None) -> CalendarEvent:
    start_obj = item.get("start", {})
    end_obj = item.get("end", {})

    # All-day events have "date" not "dateTime"
    if "date" in start_obj:
        start = datetime.fromisoformat(start_obj["date"]).replace(tzinfo=timezone.utc)
        end = datetime.fromisoformat(end_obj.get("date", start_obj["date"])).replace(tzinfo=timezone.utc)
        all_day = True
    else:
        start = datetime.fromisoformat(start_obj["dateTime"]).astimezone(timezone.utc)
        end = datetime.fromisoformat(end_obj.get("dateTime", start_obj["dateTime"])).astimezone(timezone.utc)
        all_day = False

    return CalendarEvent(
        id=str(item.get("id", "")),
        title=item.get("summary") or "No title",
        description=item.get("description") or None,
        location=item.get("location") or None,
        start=start,
        end=end,
        all_day=all_day,
        source=external_source("google"),
        calendar_id=calendar_id,
        calendar_name=calendar_name or calendar_id,
    )

def fetch_google_events(
    calendar_ids: List[str],
    day_start: datetime,
    day_end: datetime,
    credentials_path: str,
    token_path: str,
) -> List[CalendarEvent]:
    creds = _get_creds(credentials_path, token_path)
    service = build("calendar", "v3", credentials=creds, cache_discovery=False)

    events: List[CalendarEvent] = []
    time_min = day_start.isoformat()
    time_max = day_end.isoformat()

    for cal_id in calendar_ids:
        page_token = None
        while True:
            resp = service.events().list(
                calendarId=cal_id,
                timeMin=time_min,
                timeMax=time_max,
                singleEvents=True,
                orderBy="startTime",
                maxResults=MAX_RESULTS,
                pageToken=page_token,
            ).execute()

            calendar_name = resp.get("summary") or cal_id
            for item in resp.get("items", []):
                events.append(google_item_to_event(item, cal_id, calendar_name))

            page_token = resp.get("nextPageToken")
            if not page_token:
                break

    return events
