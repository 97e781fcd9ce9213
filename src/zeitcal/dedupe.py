from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Dict, Hashable, Iterable, List, Optional, Tuple

from .models import MULTIPLE_SOURCES, CalendarEvent, SourceRef, as_utc

logger = logging.getLogger(__name__)

NO_TITLE = "No title"
DEFAULT_TOLERANCE_MINUTES = 5


def normalize_title(value: object) -> str:
    text = str(value) if value else NO_TITLE
    return " ".join(text.lower().split())


def _rounded_start(start: object, tolerance_seconds: int) -> Optional[int]:
    if not isinstance(start, datetime):
        return None
    ts = as_utc(start).timestamp()
    # Round half up to the nearest tolerance boundary.
    return int(math.floor(ts / tolerance_seconds + 0.5)) * tolerance_seconds


def dedupe_key(event: CalendarEvent, tolerance_minutes: int = DEFAULT_TOLERANCE_MINUTES) -> Tuple[str, Hashable]:
    tolerance_seconds = max(1, tolerance_minutes) * 60
    return normalize_title(event.title), _rounded_start(event.start, tolerance_seconds)


def _ref_identity(ref: SourceRef) -> Tuple[str, Optional[str]]:
    return ref.provider_type, ref.provider_id


def _with_refs(event: CalendarEvent) -> CalendarEvent:
    refs: List[SourceRef] = []
    seen = set()
    for ref in event.source_refs or (event.own_source_ref(),):
        if _ref_identity(ref) in seen:
            continue
        seen.add(_ref_identity(ref))
        refs.append(ref)
    return replace(event, source_refs=tuple(refs))


def _merge(existing: CalendarEvent, incoming: CalendarEvent) -> CalendarEvent:
    refs = list(existing.source_refs)
    known = {_ref_identity(r) for r in refs}
    for ref in incoming.source_refs or (incoming.own_source_ref(),):
        if _ref_identity(ref) not in known:
            known.add(_ref_identity(ref))
            refs.append(ref)

    description = existing.description
    if incoming.description and len(incoming.description) > len(existing.description or ""):
        description = incoming.description

    calendar_type = existing.calendar_type
    if len(refs) > 1:
        calendar_type = MULTIPLE_SOURCES

    return replace(existing, source_refs=tuple(refs), description=description, calendar_type=calendar_type)


def dedupe_events(
    events: Iterable[CalendarEvent],
    tolerance_minutes: int = DEFAULT_TOLERANCE_MINUTES,
) -> List[CalendarEvent]:
    """Collapse events reported by several providers into canonical entries.

    Events are grouped by normalized title and start time rounded to the
    tolerance boundary. The first event seen in a group supplies the base
    fields; later duplicates only contribute source refs and a longer
    description. Input events are never modified.
    """
    seen: Dict[Tuple[str, Hashable], CalendarEvent] = {}
    total = 0
    for event in events:
        total += 1
        key = dedupe_key(event, tolerance_minutes)
        existing = seen.get(key)
        if existing is None:
            seen[key] = _with_refs(event)
            continue
        logger.debug("Merging duplicate %r (%s) into %s", event.title, event.source, existing.id)
        seen[key] = _merge(existing, event)

    deduped = list(seen.values())
    logger.debug("Deduplicated %d events into %d canonical events", total, len(deduped))
    return deduped
