from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Optional

from .models import LOCAL_SOURCE, CalendarEvent, Recurrence

logger = logging.getLogger(__name__)

WEEKDAYS = (1, 2, 3, 4, 5)
WEEKEND = (0, 6)
ROUTINE_CALENDAR_NAME = "Routine"
_DAY_INDEX = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}
_TIME_FORMATS = (
    re.compile(r"(\d{1,2}):(\d{2})\s*(AM|PM)", re.IGNORECASE),
    re.compile(r"(\d{1,2}):(\d{2})"),
    re.compile(r"(\d{1,2})\s*(AM|PM)", re.IGNORECASE),
)


def parse_time_of_day(value: Optional[str]) -> Optional[time]:
    """Parse "7:00 AM", "07:30" or "7 PM"; None when unreadable."""
    if not value:
        return None
    for pattern in _TIME_FORMATS:
        match = pattern.search(str(value))
        if not match:
            continue
        groups = match.groups()
        hours = int(groups[0])
        if len(groups) == 3:
            minutes, ampm = int(groups[1]), groups[2]
        elif groups[1] and groups[1].isdigit():
            minutes, ampm = int(groups[1]), None
        else:
            minutes, ampm = 0, groups[1]
        if ampm:
            ampm = ampm.upper()
            if ampm == "PM" and hours != 12:
                hours += 12
            if ampm == "AM" and hours == 12:
                hours = 0
        if hours > 23 or minutes > 59:
            return None
        return time(hours, minutes)
    return None


def _day_numbers(names: Iterable[Any]) -> List[int]:
    days: List[int] = []
    for name in names:
        # Unknown names fall back to Monday.
        day = _DAY_INDEX.get(str(name).strip().lower(), 1)
        if day not in days:
            days.append(day)
    return days


def _recurring_event(
    title: str,
    at: Optional[str],
    duration_minutes: int,
    days_of_week: Iterable[int],
    anchor: date,
    tz: tzinfo,
) -> Optional[CalendarEvent]:
    parsed = parse_time_of_day(at)
    if parsed is None:
        if at:
            logger.debug("Skipping routine item %r; unreadable time %r", title, at)
        return None
    start = datetime.combine(anchor, parsed, tzinfo=tz)
    return CalendarEvent(
        id=f"local_{uuid.uuid4().hex}",
        title=title,
        start=start,
        end=start + timedelta(minutes=duration_minutes),
        source=LOCAL_SOURCE,
        calendar_name=ROUTINE_CALENDAR_NAME,
        recurrence=Recurrence(frequency="weekly", days_of_week=tuple(days_of_week)),
    )


def build_routine_events(routines: Dict[str, Any], anchor: date, tz: tzinfo) -> List[CalendarEvent]:
    """Turn a weekday/weekend routine description into weekly recurring definitions."""
    events: List[Optional[CalendarEvent]] = []

    weekday = routines.get("weekday") or {}
    if weekday:
        meals = weekday.get("meals") or {}
        events.append(_recurring_event("Wake Up", weekday.get("wakeTime"), 0, WEEKDAYS, anchor, tz))
        events.append(_recurring_event("Breakfast", meals.get("breakfast"), 30, WEEKDAYS, anchor, tz))
        events.append(_recurring_event("Work Start", weekday.get("workStart"), 0, WEEKDAYS, anchor, tz))
        events.append(_recurring_event("Lunch", meals.get("lunch"), 60, WEEKDAYS, anchor, tz))
        events.append(_recurring_event("Work End", weekday.get("workEnd"), 0, WEEKDAYS, anchor, tz))

        exercise = weekday.get("exercise") or {}
        if exercise.get("time") and exercise.get("days"):
            try:
                duration = int(exercise.get("duration") or 60)
            except (TypeError, ValueError):
                duration = 60
            events.append(
                _recurring_event("Exercise", exercise["time"], duration, _day_numbers(exercise["days"]), anchor, tz)
            )

        events.append(_recurring_event("Dinner", meals.get("dinner"), 60, WEEKDAYS, anchor, tz))
        events.append(_recurring_event("Bedtime", weekday.get("bedtime"), 0, WEEKDAYS, anchor, tz))

    weekend = routines.get("weekend") or {}
    if weekend:
        meals = weekend.get("meals") or {}
        events.append(_recurring_event("Wake Up (Weekend)", weekend.get("wakeTime"), 0, WEEKEND, anchor, tz))
        events.append(_recurring_event("Breakfast (Weekend)", meals.get("breakfast"), 30, WEEKEND, anchor, tz))
        events.append(_recurring_event("Lunch (Weekend)", meals.get("lunch"), 60, WEEKEND, anchor, tz))
        events.append(_recurring_event("Dinner (Weekend)", meals.get("dinner"), 60, WEEKEND, anchor, tz))
        events.append(_recurring_event("Bedtime (Weekend)", weekend.get("bedtime"), 0, WEEKEND, anchor, tz))

    created = [e for e in events if e is not None]
    logger.info("Built %d routine events", len(created))
    return created
