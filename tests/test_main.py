import json
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from zeitcal.config import load_config
from zeitcal.main import fix_overlaps, main, populate_routine, suggest_time
from zeitcal.models import CalendarEvent, Recurrence
from zeitcal.store import load_events, save_events

CONFIG_YAML = """
timezone_offset_minutes: 0
calendars:
  google:
    enabled: false
  outlook:
    enabled: false
  icloud:
    enabled: false
"""


def _at(hour: int, minute: int = 0, day: int = 5) -> datetime:
    return datetime(2026, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def cfg_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    return path


def test_fix_overlaps_rewrites_the_store(cfg_path: Path, tmp_path: Path, capsys):
    store = tmp_path / "events.json"
    save_events(
        str(store),
        [CalendarEvent(id=name, title=f"Task {name}", start=_at(10), end=_at(11)) for name in ("a", "b", "c")],
    )

    report = fix_overlaps(load_config(str(cfg_path)), str(store), now=_at(8))

    saved = {e.id: e for e in load_events(str(store))}
    assert report.events_fixed == 2
    assert (saved["a"].start, saved["a"].end) == (_at(10), _at(11))
    assert (saved["b"].start, saved["b"].end) == (_at(9), _at(10))
    assert (saved["c"].start, saved["c"].end) == (_at(11), _at(12))
    assert saved["b"].rescheduled_reason == "Overlap fix"
    assert saved["a"].rescheduled_at is None
    assert "Fixed 2 overlapping events (3 overlaps found)" in capsys.readouterr().out


def test_fix_overlaps_leaves_store_untouched_without_conflicts(cfg_path: Path, tmp_path: Path):
    store = tmp_path / "events.json"
    events = [
        CalendarEvent(id="a", title="A", start=_at(9), end=_at(10)),
        CalendarEvent(id="b", title="B", start=_at(10), end=_at(11)),
    ]
    save_events(str(store), events)
    before = store.read_text(encoding="utf-8")

    report = fix_overlaps(load_config(str(cfg_path)), str(store), now=_at(8))

    assert report.conflicts_found == 0
    assert store.read_text(encoding="utf-8") == before


def test_suggest_time_uses_stored_events_as_busy(cfg_path: Path, tmp_path: Path):
    store = tmp_path / "events.json"
    save_events(str(store), [CalendarEvent(id="a", title="A", start=_at(11), end=_at(14))])

    suggestion = suggest_time(load_config(str(cfg_path)), str(store), duration_minutes=60, now=_at(10, 30))

    assert suggestion.found is True
    assert (suggestion.start_date, suggestion.start_time, suggestion.end_time) == ("2026-01-05", "14:00", "15:00")


def test_populate_routine_appends_weekly_events(cfg_path: Path, tmp_path: Path):
    store = tmp_path / "events.json"
    save_events(str(store), [CalendarEvent(id="existing", title="Existing", start=_at(9), end=_at(10))])
    routine = tmp_path / "routine.yaml"
    routine.write_text(
        """
        routines:
          weekday:
            wakeTime: "6:30 AM"
            meals:
              lunch: "12:00"
        """,
        encoding="utf-8",
    )

    created = populate_routine(load_config(str(cfg_path)), str(store), str(routine), today=date(2026, 1, 5))

    stored = load_events(str(store))
    assert [e.title for e in created] == ["Wake Up", "Lunch"]
    assert [e.id for e in stored][0] == "existing"
    assert len(stored) == 3
    assert all(e.recurrence.frequency == "weekly" for e in stored[1:])


def test_events_command_prints_expanded_merged_events(cfg_path: Path, tmp_path: Path, capsys):
    store = tmp_path / "events.json"
    save_events(
        str(store),
        [
            CalendarEvent(
                id="gym",
                title="Gym",
                start=_at(18),
                end=_at(19),
                recurrence=Recurrence(frequency="weekly", days_of_week=(1, 3)),
            ),
            CalendarEvent(id="dentist", title="Dentist", start=_at(9, day=6), end=_at(10, day=6)),
        ],
    )

    main(
        [
            "--config",
            str(cfg_path),
            "--store",
            str(store),
            "events",
            "--start",
            "2026-01-05T00:00:00Z",
            "--end",
            "2026-01-08T00:00:00Z",
        ]
    )

    out = capsys.readouterr().out
    payload = json.loads(out[out.index("["):])
    assert [e["id"] for e in payload] == ["gym_2026-01-05T18:00:00Z", "dentist", "gym_2026-01-07T18:00:00Z"]
    assert payload[0]["isRecurringInstance"] is True
    assert payload[0]["originalEventId"] == "gym"


def _corrupt_store(store: Path, *records: dict) -> None:
    store.write_text(
        json.dumps([{"id": "x", "title": "Broken", "start": "garbage", "end": "garbage"}, *records]),
        encoding="utf-8",
    )


def test_suggest_time_falls_back_when_stored_dates_are_unreadable(cfg_path: Path, tmp_path: Path, capsys):
    store = tmp_path / "events.json"
    _corrupt_store(store)

    suggestion = suggest_time(load_config(str(cfg_path)), str(store), duration_minutes=60, now=_at(8))

    assert suggestion.found is False
    assert (suggestion.start_date, suggestion.start_time, suggestion.end_time) == ("2026-01-06", "10:00", "11:00")
    assert "using the default slot" in capsys.readouterr().out


def test_fix_overlaps_skips_unreadable_records_and_keeps_them_on_disk(cfg_path: Path, tmp_path: Path):
    store = tmp_path / "events.json"
    _corrupt_store(
        store,
        *(
            {"id": name, "title": f"Task {name}", "start": "2026-01-05T10:00:00Z", "end": "2026-01-05T11:00:00Z"}
            for name in ("a", "b")
        ),
    )

    report = fix_overlaps(load_config(str(cfg_path)), str(store), now=_at(8))

    records = json.loads(store.read_text(encoding="utf-8"))
    assert report.events_fixed == 1
    assert [r["id"] for r in records] == ["x", "a", "b"]
    assert records[0]["start"] == "garbage"
    assert records[2]["start"] == "2026-01-05T09:00:00+00:00"


def test_events_command_skips_unreadable_records(cfg_path: Path, tmp_path: Path, capsys):
    store = tmp_path / "events.json"
    _corrupt_store(
        store,
        {"id": "ok", "title": "Fine", "start": "2026-01-05T09:00:00Z", "end": "2026-01-05T10:00:00Z"},
    )

    main(["--config", str(cfg_path), "--store", str(store), "events", "--start", "2026-01-05T00:00:00Z", "--end", "2026-01-06T00:00:00Z"])

    out = capsys.readouterr().out
    assert [e["id"] for e in json.loads(out[out.index("["):])] == ["ok"]
