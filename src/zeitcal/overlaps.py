from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Sequence, Set

from .config import SchedulingSettings
from .models import CalendarEvent, as_utc, overlaps
from .slots import BusyInterval, find_free_slot

logger = logging.getLogger(__name__)

OVERLAP_FIX_REASON = "Overlap fix"


@dataclass(frozen=True)
class Conflict:
    movable_id: str
    other_id: str


@dataclass
class OverlapReport:
    relocated: List[CalendarEvent] = field(default_factory=list)
    unresolved: List[CalendarEvent] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def conflicts_found(self) -> int:
        return len(self.conflicts)

    @property
    def events_fixed(self) -> int:
        return len(self.relocated)

    def to_dict(self) -> Dict[str, object]:
        return {
            "overlapsFound": self.conflicts_found,
            "overlapsFixed": self.events_fixed,
            "eventsRescheduled": [e.id for e in self.relocated],
            "eventsUnresolved": [e.id for e in self.unresolved],
        }


def find_conflicts(events: Sequence[CalendarEvent]) -> List[Conflict]:
    """Return every overlapping pair that involves at least one movable event.

    A pair of two movable events is reported once.
    """
    conflicts: List[Conflict] = []
    seen: Set[FrozenSet[str]] = set()
    for movable in events:
        if not movable.movable:
            continue
        for other in events:
            if other.id == movable.id:
                continue
            if not overlaps(movable.start, movable.end, other.start, other.end):
                continue
            pair = frozenset((movable.id, other.id))
            if pair in seen:
                continue
            seen.add(pair)
            conflicts.append(Conflict(movable_id=movable.id, other_id=other.id))
    return conflicts


def _conflicting_ids(events: Sequence[CalendarEvent], conflicts: Sequence[Conflict]) -> Set[str]:
    movable_ids = {e.id for e in events if e.movable}
    ids: Set[str] = set()
    for c in conflicts:
        ids.add(c.movable_id)
        if c.other_id in movable_ids:
            ids.add(c.other_id)
    return ids


def _relocation_minutes(event: CalendarEvent, settings: SchedulingSettings) -> int:
    recorded = round((as_utc(event.end) - as_utc(event.start)).total_seconds() / 60)
    return max(settings.min_relocation_minutes, recorded)


def _relocate(
    event: CalendarEvent,
    fixed: List[BusyInterval],
    timezone_offset_minutes: int,
    now: datetime,
    settings: SchedulingSettings,
) -> Optional[CalendarEvent]:
    slot = find_free_slot(
        _relocation_minutes(event, settings),
        fixed,
        timezone_offset_minutes=timezone_offset_minutes,
        now=now,
        settings=settings,
        horizon_days=settings.overlap_horizon_days,
    )
    if slot is None:
        return None
    fixed.append(BusyInterval(start=slot.start, end=slot.end))
    return replace(
        event,
        start=slot.start,
        end=slot.end,
        rescheduled_at=as_utc(now),
        rescheduled_reason=OVERLAP_FIX_REASON,
    )


def resolve_overlaps(
    events: Sequence[CalendarEvent],
    timezone_offset_minutes: int = 0,
    now: Optional[datetime] = None,
    settings: Optional[SchedulingSettings] = None,
) -> OverlapReport:
    """Move conflicting movable events into free working-hour slots.

    Immovable events, and movable events outside any conflict, form the fixed
    set. Conflicting movable events are visited in start order: one that no
    longer overlaps the fixed set keeps its time and joins it, so among
    movable events that only collide with each other the earliest stays put.
    The others get the first free slot against the fixed set as it stands,
    and each new slot is added to the fixed set before the next search.

    Input events are never modified; relocated copies are returned.
    """
    settings = settings or SchedulingSettings()
    now = now or datetime.now(timezone.utc)
    report = OverlapReport(conflicts=find_conflicts(events))
    logger.info("Found %d overlaps involving movable events", report.conflicts_found)
    if not report.conflicts:
        return report

    needs_move = _conflicting_ids(events, report.conflicts)
    fixed: List[BusyInterval] = [
        BusyInterval(start=as_utc(e.start), end=as_utc(e.end)) for e in events if e.id not in needs_move
    ]
    pending = sorted(
        (e for e in events if e.id in needs_move),
        key=lambda e: as_utc(e.start),
    )
    logger.info("Need to reschedule up to %d events; %d fixed intervals", len(pending), len(fixed))

    for event in pending:
        if not any(overlaps(event.start, event.end, b.start, b.end) for b in fixed):
            logger.debug("Keeping %r in place; no remaining conflict", event.title)
            fixed.append(BusyInterval(start=as_utc(event.start), end=as_utc(event.end)))
            continue

        moved = _relocate(event, fixed, timezone_offset_minutes, now, settings)
        if moved is None:
            logger.warning("Could not find slot for %r", event.title)
            report.unresolved.append(event)
            fixed.append(BusyInterval(start=as_utc(event.start), end=as_utc(event.end)))
            continue
        logger.info("Rescheduled %r to %s - %s", event.title, moved.start.isoformat(), moved.end.isoformat())
        report.relocated.append(moved)

    return report
