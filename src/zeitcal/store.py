from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import json
import logging

from .models import CalendarEvent, Recurrence, SourceRef

logger = logging.getLogger(__name__)

_RECURRENCE_KEYS = {"frequency", "daysOfWeek", "interval"}


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def recurrence_to_dict(rule: Recurrence) -> Dict[str, Any]:
    data: Dict[str, Any] = dict(rule.extra)
    data.update(
        {
            "frequency": rule.frequency,
            "daysOfWeek": list(rule.days_of_week),
            "interval": rule.interval,
        }
    )
    return data


def recurrence_from_dict(data: Dict[str, Any]) -> Recurrence:
    return Recurrence(
        frequency=str(data.get("frequency", "")),
        days_of_week=tuple(int(d) for d in data.get("daysOfWeek") or []),
        interval=int(data.get("interval") or 1),
        extra={k: v for k, v in data.items() if k not in _RECURRENCE_KEYS},
    )


def event_to_dict(event: CalendarEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "start": _dt(event.start),
        "end": _dt(event.end),
        "source": event.source,
        "allDay": event.all_day,
        "calendarId": event.calendar_id,
        "calendarName": event.calendar_name,
        "calendarType": event.calendar_type,
        "recurrence": recurrence_to_dict(event.recurrence) if event.recurrence else None,
        "sourceRefs": [
            {"providerType": r.provider_type, "providerId": r.provider_id, "providerName": r.provider_name}
            for r in event.source_refs
        ],
        "isRecurringInstance": event.is_recurring_instance,
        "originalEventId": event.original_event_id,
        "rescheduledAt": _dt(event.rescheduled_at),
        "rescheduledReason": event.rescheduled_reason,
    }


def event_from_dict(data: Dict[str, Any]) -> CalendarEvent:
    start = _parse_dt(data.get("start"))
    if start is None:
        raise ValueError(f"Stored event {data.get('id')!r} has no start")
    end = _parse_dt(data.get("end")) or start
    recurrence = data.get("recurrence")
    return CalendarEvent(
        id=str(data["id"]),
        title=str(data.get("title") or ""),
        description=data.get("description"),
        location=data.get("location"),
        start=start,
        end=end,
        source=str(data.get("source", "local")),
        all_day=bool(data.get("allDay", False)),
        calendar_id=data.get("calendarId"),
        calendar_name=data.get("calendarName"),
        calendar_type=data.get("calendarType"),
        recurrence=recurrence_from_dict(recurrence) if isinstance(recurrence, dict) else None,
        source_refs=tuple(
            SourceRef(
                provider_type=str(r.get("providerType", "")),
                provider_id=r.get("providerId"),
                provider_name=r.get("providerName"),
            )
            for r in data.get("sourceRefs") or []
        ),
        is_recurring_instance=bool(data.get("isRecurringInstance", False)),
        original_event_id=data.get("originalEventId"),
        rescheduled_at=_parse_dt(data.get("rescheduledAt")),
        rescheduled_reason=data.get("rescheduledReason"),
    )


_DECODE_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


def load_records(path: str) -> List[Dict[str, Any]]:
    p = Path(path)
    if not p.exists():
        return []
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Event store {path} must hold a JSON list")
    return data


def load_events(path: str, skip_invalid: bool = False) -> List[CalendarEvent]:
    """Decode the store. With ``skip_invalid`` unreadable records are logged and left out."""
    events: List[CalendarEvent] = []
    for index, item in enumerate(load_records(path)):
        try:
            events.append(event_from_dict(item))
        except _DECODE_ERRORS as exc:
            if not skip_invalid:
                raise ValueError(f"Unreadable stored event at index {index}: {exc}") from exc
            logger.warning("Skipping unreadable stored event at index %d: %s", index, exc)
    return events


def save_records(path: str, records: List[Dict[str, Any]]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")


def save_events(path: str, events: Iterable[CalendarEvent]) -> None:
    save_records(path, [event_to_dict(e) for e in events])


def apply_relocations(records: Iterable[Dict[str, Any]], relocated: Iterable[CalendarEvent]) -> List[Dict[str, Any]]:
    """Rewrite start/end and reschedule notes of relocated events in raw store records.

    Everything else, including records that cannot be decoded, is kept as-is.
    """
    moved = {e.id: e for e in relocated}
    out: List[Dict[str, Any]] = []
    for record in records:
        update = moved.get(record.get("id")) if isinstance(record, dict) else None
        if update is None:
            out.append(record)
            continue
        out.append(
            dict(
                record,
                start=_dt(update.start),
                end=_dt(update.end),
                rescheduledAt=_dt(update.rescheduled_at),
                rescheduledReason=update.rescheduled_reason,
            )
        )
    return out
