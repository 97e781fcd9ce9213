from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List
import yaml

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

@dataclass(frozen=True)
class SchedulingSettings:
    work_start_hour: int = 9
    work_end_hour: int = 22
    # Python weekday numbers, Monday == 0
    working_days: FrozenSet[int] = frozenset({0, 1, 2, 3, 4})
    default_duration_minutes: int = 60
    suggestion_horizon_days: int = 14
    overlap_horizon_days: int = 30
    min_relocation_minutes: int = 60
    fallback_hour: int = 10

@dataclass
class DedupeConfig:
    tolerance_minutes: int = 5

@dataclass
class RecurrenceConfig:
    honor_interval: bool = False

@dataclass
class GoogleConfig:
    enabled: bool
    calendar_ids: List[str]

@dataclass
class OutlookConfig:
    enabled: bool
    calendar_ids: List[str]

@dataclass
class ICloudConfig:
    enabled: bool
    caldav_url: str
    calendar_name_allowlist: List[str]

@dataclass
class AppConfig:
    timezone_offset_minutes: int
    store_path: str
    scheduling: SchedulingSettings
    dedupe: DedupeConfig
    recurrence: RecurrenceConfig
    google: GoogleConfig
    outlook: OutlookConfig
    icloud: ICloudConfig


def _parse_working_days(raw: Any) -> FrozenSet[int]:
    if not raw:
        return SchedulingSettings().working_days
    days = set()
    for item in raw:
        if isinstance(item, int):
            days.add(item % 7)
            continue
        name = str(item).strip().lower()
        if name not in WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday in working_days: {item!r}")
        days.add(WEEKDAY_NAMES.index(name))
    return frozenset(days)


def parse_scheduling(data: Dict[str, Any]) -> SchedulingSettings:
    defaults = SchedulingSettings()
    settings = SchedulingSettings(
        work_start_hour=int(data.get("work_start_hour", defaults.work_start_hour)),
        work_end_hour=int(data.get("work_end_hour", defaults.work_end_hour)),
        working_days=_parse_working_days(data.get("working_days")),
        default_duration_minutes=int(data.get("default_duration_minutes", defaults.default_duration_minutes)),
        suggestion_horizon_days=int(data.get("suggestion_horizon_days", defaults.suggestion_horizon_days)),
        overlap_horizon_days=int(data.get("overlap_horizon_days", defaults.overlap_horizon_days)),
        min_relocation_minutes=int(data.get("min_relocation_minutes", defaults.min_relocation_minutes)),
        fallback_hour=int(data.get("fallback_hour", defaults.fallback_hour)),
    )
    if not 0 <= settings.work_start_hour < settings.work_end_hour <= 24:
        raise ValueError("work_start_hour must be before work_end_hour, both within 0..24")
    return settings


def load_config(path: str) -> AppConfig:
    p = Path(path)
    data: Dict[str, Any] = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    scheduling = data.get("scheduling", {})
    dedupe = data.get("dedupe", {})
    recurrence = data.get("recurrence", {})
    calendars = data.get("calendars", {})

    google = calendars.get("google", {})
    outlook = calendars.get("outlook", {})
    icloud = calendars.get("icloud", {})

    return AppConfig(
        timezone_offset_minutes=int(data.get("timezone_offset_minutes", 0)),
        store_path=str(data.get("store_path", "/var/lib/zeitcal/events.json")),
        scheduling=parse_scheduling(scheduling),
        dedupe=DedupeConfig(
            tolerance_minutes=int(dedupe.get("tolerance_minutes", 5)),
        ),
        recurrence=RecurrenceConfig(
            honor_interval=bool(recurrence.get("honor_interval", False)),
        ),
        google=GoogleConfig(
            enabled=bool(google.get("enabled", True)),
            calendar_ids=list(google.get("calendar_ids", ["primary"])),
        ),
        outlook=OutlookConfig(
            enabled=bool(outlook.get("enabled", False)),
            calendar_ids=list(outlook.get("calendar_ids", [])),
        ),
        icloud=ICloudConfig(
            enabled=bool(icloud.get("enabled", False)),
            caldav_url=str(icloud.get("caldav_url", "https://caldav.icloud.com/")),
            calendar_name_allowlist=list(icloud.get("calendar_name_allowlist", [])),
        ),
    )
