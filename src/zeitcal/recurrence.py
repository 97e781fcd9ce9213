from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Iterable, List

from .models import CalendarEvent, as_utc, iso_z

logger = logging.getLogger(__name__)

WEEKLY = "weekly"


def _sunday_based_weekday(d: date) -> int:
    # date.weekday() is Monday == 0; recurrence rules use Sunday == 0.
    return (d.weekday() + 1) % 7


def _week_start(d: date) -> date:
    return d - timedelta(days=_sunday_based_weekday(d))


def _local_date(moment: datetime, reference: datetime) -> date:
    if reference.tzinfo is None:
        return as_utc(moment).date()
    return as_utc(moment).astimezone(reference.tzinfo).date()


def _in_window(event: CalendarEvent, window_start: datetime, window_end: datetime) -> bool:
    return as_utc(event.start) <= as_utc(window_end) and as_utc(event.end) >= as_utc(window_start)


def expand_event(
    event: CalendarEvent,
    window_start: datetime,
    window_end: datetime,
    honor_interval: bool = False,
) -> List[CalendarEvent]:
    """Materialize the occurrences of ``event`` inside ``[window_start, window_end]``.

    Only weekly rules are expanded. An event without a rule, or with any other
    frequency, is returned as-is when it intersects the window. Weekly
    occurrences are emitted for every calendar day of the window (day
    granularity, evaluated in the event's own timezone) whose weekday is in the
    rule, keeping the original time of day and duration.

    ``interval`` is ignored unless ``honor_interval`` is set, in which case only
    weeks that are a whole number of intervals after the original start's week
    produce occurrences.
    """
    rule = event.recurrence
    if rule is None or str(rule.frequency).lower() != WEEKLY:
        return [event] if _in_window(event, window_start, window_end) else []

    days = set(rule.days_of_week)
    if not days:
        return []

    duration = event.end - event.start
    first_day = _local_date(window_start, event.start)
    last_day = _local_date(window_end, event.start)
    anchor_week = _week_start(event.start.date())
    try:
        interval = max(1, int(rule.interval or 1))
    except (TypeError, ValueError):
        interval = 1

    instances: List[CalendarEvent] = []
    day = first_day
    while day <= last_day:
        if _sunday_based_weekday(day) in days:
            weeks_apart = (_week_start(day) - anchor_week).days // 7
            if not honor_interval or weeks_apart % interval == 0:
                start = datetime.combine(day, event.start.timetz().replace(second=0, microsecond=0))
                instances.append(
                    replace(
                        event,
                        id=f"{event.id}_{iso_z(start)}",
                        start=start,
                        end=start + duration,
                        is_recurring_instance=True,
                        original_event_id=event.id,
                    )
                )
        day += timedelta(days=1)

    logger.debug("Generated %d recurring instances for %r", len(instances), event.title)
    return instances


def expand_events(
    events: Iterable[CalendarEvent],
    window_start: datetime,
    window_end: datetime,
    honor_interval: bool = False,
) -> List[CalendarEvent]:
    expanded: List[CalendarEvent] = []
    for event in events:
        expanded.extend(expand_event(event, window_start, window_end, honor_interval=honor_interval))
    return expanded
