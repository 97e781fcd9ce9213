from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

LOCAL_SOURCE = "local"
EXTERNAL_PREFIX = "external:"
MULTIPLE_SOURCES = "multiple"


@dataclass(frozen=True)
class SourceRef:
    provider_type: str          # "local" / "google" / "outlook" / "apple"
    provider_id: Optional[str] = None
    provider_name: Optional[str] = None


@dataclass(frozen=True)
class Recurrence:
    frequency: str              # only "weekly" is expanded
    days_of_week: Tuple[int, ...] = ()   # 0 = Sunday .. 6 = Saturday
    interval: int = 1
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime             # timezone-aware
    end: datetime               # timezone-aware
    source: str = LOCAL_SOURCE  # "local" / "external:<provider>"
    description: Optional[str] = None
    location: Optional[str] = None
    all_day: bool = False
    calendar_id: Optional[str] = None
    calendar_name: Optional[str] = None
    calendar_type: Optional[str] = None
    recurrence: Optional[Recurrence] = None
    source_refs: Tuple[SourceRef, ...] = ()
    is_recurring_instance: bool = False
    original_event_id: Optional[str] = None
    rescheduled_at: Optional[datetime] = None
    rescheduled_reason: Optional[str] = None

    @property
    def provider_type(self) -> str:
        if self.source.startswith(EXTERNAL_PREFIX):
            return self.source[len(EXTERNAL_PREFIX):]
        return self.source

    @property
    def movable(self) -> bool:
        return self.source == LOCAL_SOURCE and not self.is_recurring_instance

    def own_source_ref(self) -> SourceRef:
        return SourceRef(
            provider_type=self.provider_type,
            provider_id=self.calendar_id,
            provider_name=self.calendar_name,
        )


def external_source(provider: str) -> str:
    return f"{EXTERNAL_PREFIX}{provider}"


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open: touching intervals do not overlap.
    return as_utc(a_start) < as_utc(b_end) and as_utc(a_end) > as_utc(b_start)


def iso_z(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")
