from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from dotenv import load_dotenv

from .config import AppConfig, load_config
from .dedupe import dedupe_events
from .models import CalendarEvent, as_utc
from .overlaps import OverlapReport, resolve_overlaps
from .providers import PROVIDER_LABELS, ProviderConnection, fetch_all
from .recurrence import expand_events
from .routines import build_routine_events
from .slots import SlotSuggestion, default_suggestion, suggest_time_slot
from .store import apply_relocations, event_to_dict, load_events, load_records, save_records

CONFIG_PATH_DEFAULT = "/opt/zeitcal/config.yaml"


def _parse_moment(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def _user_tz(cfg: AppConfig) -> timezone:
    # Offsets are subtracted from UTC to get local time.
    return timezone(-timedelta(minutes=cfg.timezone_offset_minutes))


def _provider_connections(cfg: AppConfig) -> List[ProviderConnection]:
    connections: List[ProviderConnection] = []

    if cfg.google.enabled:
        creds_path = os.environ.get("GOOGLE_CREDENTIALS_JSON", "")
        token_path = os.environ.get("GOOGLE_TOKEN_JSON", "")
        if creds_path and token_path:
            connections.append(
                ProviderConnection(
                    provider="google",
                    calendar_ids=cfg.google.calendar_ids,
                    credentials={"credentials_path": creds_path, "token_path": token_path},
                )
            )
        else:
            print("Google enabled but GOOGLE_CREDENTIALS_JSON/GOOGLE_TOKEN_JSON not set; skipping Google.")

    if cfg.outlook.enabled:
        token = os.environ.get("OUTLOOK_ACCESS_TOKEN", "")
        if token:
            connections.append(
                ProviderConnection(
                    provider="outlook",
                    calendar_ids=cfg.outlook.calendar_ids,
                    credentials={"access_token": token},
                )
            )
        else:
            print("Outlook enabled but OUTLOOK_ACCESS_TOKEN not set; skipping Outlook.")

    if cfg.icloud.enabled:
        user = os.environ.get("ICLOUD_USERNAME", "")
        pw = os.environ.get("ICLOUD_APP_PASSWORD", "")
        if user and pw:
            connections.append(
                ProviderConnection(
                    provider="apple",
                    calendar_ids=cfg.icloud.calendar_name_allowlist,
                    credentials={"username": user, "app_password": pw},
                    options={"caldav_url": cfg.icloud.caldav_url},
                )
            )
        else:
            print("iCloud enabled but ICLOUD_USERNAME/ICLOUD_APP_PASSWORD not set; skipping iCloud.")

    return connections


def _fetch_events_for_range(cfg: AppConfig, range_start: datetime, range_end: datetime) -> List[CalendarEvent]:
    result = fetch_all(_provider_connections(cfg), range_start, range_end)
    for provider in result.failures:
        label = PROVIDER_LABELS.get(provider, provider)
        print(f"{label} fetch failed; continuing without {label} events.")
    return result.events


def _process_events(
    cfg: AppConfig,
    local_events: Iterable[CalendarEvent],
    fetched: Iterable[CalendarEvent],
    window_start: datetime,
    window_end: datetime,
) -> List[CalendarEvent]:
    # Local events go first so they stay canonical when a provider mirrors them.
    canonical = dedupe_events([*local_events, *fetched], tolerance_minutes=cfg.dedupe.tolerance_minutes)
    expanded = expand_events(canonical, window_start, window_end, honor_interval=cfg.recurrence.honor_interval)
    return sorted(expanded, key=lambda e: as_utc(e.start))


def list_events(cfg: AppConfig, store_path: str, window_start: datetime, window_end: datetime) -> List[CalendarEvent]:
    stored = load_events(store_path, skip_invalid=True)
    fetched = _fetch_events_for_range(cfg, window_start, window_end)
    events = _process_events(cfg, stored, fetched, window_start, window_end)
    print(f"Returning {len(events)} events ({len(stored)} stored, {len(fetched)} fetched)")
    return events


def suggest_time(
    cfg: AppConfig,
    store_path: str,
    duration_minutes: Optional[int] = None,
    title: Optional[str] = None,
    reserved: Iterable[Any] = (),
    now: Optional[datetime] = None,
) -> SlotSuggestion:
    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(days=1)
    window_end = now + timedelta(days=cfg.scheduling.suggestion_horizon_days + 1)
    try:
        stored = load_events(store_path)
    except ValueError as exc:
        print(f"Stored events could not be read ({exc}); using the default slot.")
        return default_suggestion(cfg.timezone_offset_minutes, now, cfg.scheduling)
    busy = _process_events(
        cfg,
        stored,
        _fetch_events_for_range(cfg, window_start, window_end),
        window_start,
        window_end,
    )
    return suggest_time_slot(
        duration_minutes,
        timezone_offset_minutes=cfg.timezone_offset_minutes,
        busy=busy,
        reserved=reserved,
        now=now,
        settings=cfg.scheduling,
        title=title,
    )


def fix_overlaps(cfg: AppConfig, store_path: str, now: Optional[datetime] = None) -> OverlapReport:
    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(days=1)
    window_end = now + timedelta(days=cfg.scheduling.overlap_horizon_days + 1)
    stored = load_events(store_path, skip_invalid=True)
    events = _process_events(
        cfg,
        stored,
        _fetch_events_for_range(cfg, window_start, window_end),
        window_start,
        window_end,
    )
    movable = sum(1 for e in events if e.movable)
    print(f"Checking {len(events)} events for overlaps ({movable} movable, {len(events) - movable} fixed)")

    report = resolve_overlaps(
        events,
        timezone_offset_minutes=cfg.timezone_offset_minutes,
        now=now,
        settings=cfg.scheduling,
    )
    if report.relocated:
        save_records(store_path, apply_relocations(load_records(store_path), report.relocated))
    for event in report.unresolved:
        print(f"Warning: could not find a free slot for {event.title!r}; left unchanged")
    print(f"Fixed {report.events_fixed} overlapping events ({report.conflicts_found} overlaps found)")
    return report


def populate_routine(cfg: AppConfig, store_path: str, routine_path: str, today: Optional[date] = None) -> List[CalendarEvent]:
    tz = _user_tz(cfg)
    today = today or datetime.now(tz).date()
    data: Dict[str, Any] = yaml.safe_load(Path(routine_path).read_text(encoding="utf-8")) or {}
    routines = data.get("routines", data)
    created = build_routine_events(routines, today, tz)
    save_records(store_path, [*load_records(store_path), *(event_to_dict(e) for e in created)])
    print(f"Created {len(created)} routine events")
    return created


def _parse_reserved(values: Optional[List[str]]) -> List[Dict[str, str]]:
    reserved: List[Dict[str, str]] = []
    for raw in values or []:
        start, _, end = raw.partition("/")
        reserved.append({"start": start, "end": end})
    return reserved


def main(argv: Optional[List[str]] = None) -> None:
    import argparse

    ap = argparse.ArgumentParser(description="Calendar reconciliation and scheduling")
    ap.add_argument("--config", default=CONFIG_PATH_DEFAULT)
    ap.add_argument("--store", help="Event store path; overrides store_path from the config")
    ap.add_argument("--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    events_cmd = sub.add_parser("events")
    events_cmd.add_argument("--start", required=True, help="ISO-8601 window start")
    events_cmd.add_argument("--end", required=True, help="ISO-8601 window end")

    suggest = sub.add_parser("suggest-time")
    suggest.add_argument("--duration", type=int, default=None, help="Minutes")
    suggest.add_argument("--title")
    suggest.add_argument("--reserve", action="append", help="START/END ISO pair already handed out")

    sub.add_parser("fix-overlaps")

    routine = sub.add_parser("populate-routine")
    routine.add_argument("--routine", required=True, help="YAML routine file")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv()
    cfg = load_config(args.config)
    store_path = args.store or cfg.store_path

    if args.command == "events":
        start, end = _parse_moment(args.start), _parse_moment(args.end)
        if end < start:
            ap.error("--end must not be before --start")
        events = list_events(cfg, store_path, start, end)
        print(json.dumps([event_to_dict(e) for e in events], indent=2, ensure_ascii=False))
        return

    if args.command == "suggest-time":
        suggestion = suggest_time(
            cfg,
            store_path,
            duration_minutes=args.duration,
            title=args.title,
            reserved=_parse_reserved(args.reserve),
        )
        print(json.dumps(suggestion.to_dict(), indent=2))
        return

    if args.command == "fix-overlaps":
        report = fix_overlaps(cfg, store_path)
        print(json.dumps(report.to_dict(), indent=2))
        return

    if args.command == "populate-routine":
        created = populate_routine(cfg, store_path, args.routine)
        print(json.dumps({"eventsCreated": len(created)}, indent=2))
        return


if __name__ == "__main__":
    main()
