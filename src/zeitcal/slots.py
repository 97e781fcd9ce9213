from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .config import SchedulingSettings
from .models import as_utc, overlaps

logger = logging.getLogger(__name__)

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class FreeSlot:
    local_start: datetime       # naive, user's wall clock
    local_end: datetime
    start: datetime             # aware UTC
    end: datetime
    day_offset: int


@dataclass(frozen=True)
class SlotSuggestion:
    start_date: str             # YYYY-MM-DD, local
    start_time: str             # HH:MM, local
    end_date: str
    end_time: str
    reason: str
    found: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date,
            "startTime": self.start_time,
            "endDate": self.end_date,
            "endTime": self.end_time,
            "reason": self.reason,
            "found": self.found,
        }


def local_now(now: datetime, timezone_offset_minutes: int) -> datetime:
    """Wall-clock time for a user whose offset is subtracted from UTC."""
    return (as_utc(now) - timedelta(minutes=timezone_offset_minutes)).replace(tzinfo=None)


def local_to_utc(local: datetime, timezone_offset_minutes: int) -> datetime:
    return (local + timedelta(minutes=timezone_offset_minutes)).replace(tzinfo=timezone.utc)


def _parse_moment(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise TypeError(f"Unsupported timestamp value: {value!r}")


def coerce_interval(item: Any) -> BusyInterval:
    """Accept a BusyInterval, anything with start/end attributes, or a {start, end} mapping."""
    if isinstance(item, Mapping):
        start, end = item.get("start"), item.get("end")
    else:
        start, end = getattr(item, "start"), getattr(item, "end")
    start_dt, end_dt = _parse_moment(start), _parse_moment(end)
    if end_dt < start_dt:
        raise ValueError(f"Interval ends before it starts: {start_dt.isoformat()} > {end_dt.isoformat()}")
    return BusyInterval(start=start_dt, end=end_dt)


def _has_conflict(start: datetime, end: datetime, busy: Iterable[BusyInterval]) -> bool:
    return any(overlaps(start, end, b.start, b.end) for b in busy)


def find_free_slot(
    duration_minutes: int,
    busy: Sequence[BusyInterval],
    timezone_offset_minutes: int = 0,
    now: Optional[datetime] = None,
    settings: Optional[SchedulingSettings] = None,
    horizon_days: Optional[int] = None,
) -> Optional[FreeSlot]:
    """Return the earliest hour-aligned slot inside the working window, or None.

    Days are scanned from the user's local today; today never offers the hour
    that has already begun. A slot that would run past the end of the working
    day is rejected.
    """
    settings = settings or SchedulingSettings()
    horizon = settings.suggestion_horizon_days if horizon_days is None else horizon_days
    now_local = local_now(now or datetime.now(timezone.utc), timezone_offset_minutes)
    length = timedelta(minutes=duration_minutes)

    for day_offset in range(horizon):
        day = now_local.date() + timedelta(days=day_offset)
        if day.weekday() not in settings.working_days:
            continue

        first_hour = settings.work_start_hour
        if day_offset == 0:
            first_hour = max(settings.work_start_hour, now_local.hour + 1)
        day_end = datetime.combine(day, time()) + timedelta(hours=settings.work_end_hour)

        for hour in range(first_hour, settings.work_end_hour):
            candidate_start = datetime.combine(day, time(hour))
            candidate_end = candidate_start + length
            if candidate_end > day_end:
                break
            start_utc = local_to_utc(candidate_start, timezone_offset_minutes)
            end_utc = local_to_utc(candidate_end, timezone_offset_minutes)
            if not _has_conflict(start_utc, end_utc, busy):
                return FreeSlot(
                    local_start=candidate_start,
                    local_end=candidate_end,
                    start=start_utc,
                    end=end_utc,
                    day_offset=day_offset,
                )
    return None


def format_hour(hour: int) -> str:
    suffix = "AM" if hour < 12 else "PM"
    return f"{(hour % 12) or 12}:00 {suffix}"


def _slot_reason(slot: FreeSlot) -> str:
    hour = slot.local_start.hour
    when = format_hour(hour)
    if slot.day_offset == 0:
        reason = f"First available slot today at {when}"
    elif slot.day_offset == 1:
        reason = f"First available slot tomorrow at {when}"
    else:
        reason = f"First available slot on {DAY_NAMES[slot.local_start.weekday()]} at {when}"

    if hour < 12:
        reason += " - great time for focused work"
    elif 14 <= hour < 17:
        reason += " - ideal for meetings and collaboration"
    return reason


def _suggestion(start: datetime, end: datetime, reason: str, found: bool) -> SlotSuggestion:
    return SlotSuggestion(
        start_date=start.strftime("%Y-%m-%d"),
        start_time=start.strftime("%H:%M"),
        end_date=end.strftime("%Y-%m-%d"),
        end_time=end.strftime("%H:%M"),
        reason=reason,
        found=found,
    )


def _fallback(today: date, duration_minutes: int, settings: SchedulingSettings, reason: str) -> SlotSuggestion:
    start = datetime.combine(today + timedelta(days=1), time(settings.fallback_hour))
    return _suggestion(start, start + timedelta(minutes=duration_minutes), reason, found=False)


def suggest_time_slot(
    duration_minutes: Optional[int] = None,
    timezone_offset_minutes: int = 0,
    busy: Iterable[Any] = (),
    reserved: Iterable[Any] = (),
    now: Optional[datetime] = None,
    settings: Optional[SchedulingSettings] = None,
    title: Optional[str] = None,
) -> SlotSuggestion:
    """Suggest a time for a not-yet-scheduled task.

    ``busy`` is the persisted calendar and ``reserved`` holds slots already
    handed out in the current planning session. Both accept BusyInterval,
    CalendarEvent or ``{"start": ..., "end": ...}`` mappings with ISO strings.

    Never raises: when nothing fits in the horizon, or the input cannot be
    read, the result is tomorrow at the fallback hour with ``found=False``.
    """
    settings = settings or SchedulingSettings()
    now = now or datetime.now(timezone.utc)
    fallback_when = format_hour(settings.fallback_hour)

    try:
        duration = int(duration_minutes or settings.default_duration_minutes)
        if duration <= 0:
            raise ValueError(f"Duration must be positive, got {duration}")
        intervals: List[BusyInterval] = [coerce_interval(item) for item in busy]
        held = [coerce_interval(item) for item in reserved]
        logger.info(
            "Finding time slot for %r, duration %d mins, %d busy intervals (%d reserved)",
            title, duration, len(intervals) + len(held), len(held),
        )
        intervals.extend(held)
        intervals.sort(key=lambda b: b.start)

        slot = find_free_slot(
            duration,
            intervals,
            timezone_offset_minutes=timezone_offset_minutes,
            now=now,
            settings=settings,
        )
        if slot is not None:
            logger.info("Found available slot: %s - %s", slot.local_start, slot.local_end)
            return _suggestion(slot.local_start, slot.local_end, _slot_reason(slot), found=True)

        logger.info("No available slots found, using default (tomorrow %s)", fallback_when)
        return _fallback(
            local_now(now, timezone_offset_minutes).date(),
            duration,
            settings,
            f"Suggested tomorrow morning at {fallback_when} - great time for focused work",
        )
    except (ValueError, TypeError, AttributeError, OverflowError) as exc:
        logger.warning("Error suggesting time, using default slot: %s", exc)
        return default_suggestion(timezone_offset_minutes, now, settings)


def default_suggestion(
    timezone_offset_minutes: int = 0,
    now: Optional[datetime] = None,
    settings: Optional[SchedulingSettings] = None,
) -> SlotSuggestion:
    """Tomorrow at the fallback hour, local time, for the default duration."""
    settings = settings or SchedulingSettings()
    now = now or datetime.now(timezone.utc)
    try:
        today = local_now(now, int(timezone_offset_minutes)).date()
    except (TypeError, ValueError, OverflowError):
        today = as_utc(now).date()
    return _fallback(
        today,
        settings.default_duration_minutes,
        settings,
        f"Suggested tomorrow morning at {format_hour(settings.fallback_hour)}",
    )
