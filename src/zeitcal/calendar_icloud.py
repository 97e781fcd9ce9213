from __future__ import annotations
from datetime import date, datetime, timezone
import logging
from typing import Any, List, Optional

import caldav
from caldav.elements import dav

from .models import CalendarEvent, external_source

ICLOUD_CALDAV_URL = "https://caldav.icloud.com/"
_ICAL_COMPAT_MSG = "Ical data was modified to avoid compatibility issues"


class _IcalCompatibilityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return _ICAL_COMPAT_MSG not in record.getMessage()


def _install_ical_compatibility_filter() -> None:
    root_logger = logging.getLogger()
    if any(isinstance(f, _IcalCompatibilityFilter) for f in root_logger.filters):
        return
    root_logger.addFilter(_IcalCompatibilityFilter())


def _text(vevent: Any, name: str) -> Optional[str]:
    prop = getattr(vevent, name, None)
    if prop is None:
        return None
    value = str(prop.value).strip()
    return value or None


def _as_datetime(value: Any) -> datetime:
    # Date-only values are all-day; floating times are read as UTC.
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc) if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time(), tzinfo=timezone.utc)
    raise ValueError(f"Unsupported DTSTART/DTEND value: {value!r}")


def vevent_to_event(vevent: Any, calendar_name: str) -> CalendarEvent:
    dtstart = vevent.dtstart.value
    dtend_prop = getattr(vevent, "dtend", None)
    dtend = dtend_prop.value if dtend_prop is not None else dtstart

    return CalendarEvent(
        id=_text(vevent, "uid") or "",
        title=_text(vevent, "summary") or "No title",
        description=_text(vevent, "description"),
        location=_text(vevent, "location"),
        start=_as_datetime(dtstart),
        end=_as_datetime(dtend),
        all_day=not isinstance(dtstart, datetime),
        source=external_source("apple"),
        calendar_id=calendar_name,
        calendar_name=calendar_name,
    )


def fetch_icloud_events(
    day_start: datetime,
    day_end: datetime,
    username: str,
    app_password: str,
    calendar_name_allowlist: List[str],
    caldav_url: str = ICLOUD_CALDAV_URL,
) -> List[CalendarEvent]:
    _install_ical_compatibility_filter()

    client = caldav.DAVClient(
        url=caldav_url,
        username=username,
        password=app_password,
    )
    principal = client.principal()
    calendars = principal.calendars()

    events: List[CalendarEvent] = []

    for cal in calendars:
        name = getattr(cal, "name", None) or cal.get_properties([dav.DisplayName()]).get(dav.DisplayName(), "")
        if calendar_name_allowlist and name not in calendar_name_allowlist:
            continue

        results = cal.search(start=day_start, end=day_end, event=True, expand=True)

        for r in results:
            vobj = r.vobject_instance
            vevent = getattr(vobj, "vevent", None)
            if vevent is None:
                continue
            events.append(vevent_to_event(vevent, name))

    return events
