from datetime import datetime, timedelta, timezone
from itertools import permutations

from zeitcal.dedupe import dedupe_events, normalize_title
from zeitcal.models import CalendarEvent, SourceRef


def _event(
    title,
    provider: str = "google",
    calendar_id: str = "primary",
    minute: int = 0,
    description: str | None = None,
    event_id: str | None = None,
) -> CalendarEvent:
    start = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc) + timedelta(minutes=minute)
    return CalendarEvent(
        id=event_id or f"{provider}-{calendar_id}-{minute}",
        title=title,
        start=start,
        end=start + timedelta(hours=1),
        source=f"external:{provider}",
        description=description,
        calendar_id=calendar_id,
        calendar_name=f"{provider} {calendar_id}",
    )


def test_merges_case_and_whitespace_variants_from_different_providers():
    google = _event("Team Sync", provider="google", minute=0)
    outlook = _event("team sync ", provider="outlook", calendar_id="work", minute=2)

    deduped = dedupe_events([google, outlook])

    assert len(deduped) == 1
    merged = deduped[0]
    assert merged.id == google.id
    assert [r.provider_type for r in merged.source_refs] == ["google", "outlook"]
    assert merged.calendar_type == "multiple"


def test_single_source_event_gets_its_own_ref_and_no_multiple_marker():
    deduped = dedupe_events([_event("Standup")])

    assert deduped[0].source_refs == (SourceRef("google", "primary", "google primary"),)
    assert deduped[0].calendar_type is None


def test_same_calendar_reported_twice_is_not_listed_twice():
    deduped = dedupe_events([_event("Standup", event_id="a"), _event("standup", event_id="b")])

    assert len(deduped) == 1
    assert len(deduped[0].source_refs) == 1
    assert deduped[0].calendar_type is None


def test_longer_description_replaces_shorter_only():
    short = _event("Planning", provider="google", description="Q1")
    longer = _event("Planning", provider="apple", description="Q1 roadmap review")
    shortest = _event("Planning", provider="outlook", description="x")

    merged = dedupe_events([short, longer, shortest])[0]

    assert merged.description == "Q1 roadmap review"


def test_events_outside_tolerance_or_with_other_titles_stay_separate():
    events = [
        _event("Review", minute=0),
        _event("Review", provider="outlook", minute=10),
        _event("Retro", provider="apple", minute=0),
    ]

    assert len(dedupe_events(events)) == 3


def test_missing_title_is_treated_as_no_title():
    untitled = _event(None, provider="google")
    named = _event("no   TITLE", provider="outlook")

    deduped = dedupe_events([untitled, named])

    assert len(deduped) == 1
    assert normalize_title(None) == "no title"


def test_malformed_start_does_not_raise():
    broken = CalendarEvent(id="x", title="Broken", start=None, end=None)  # type: ignore[arg-type]

    deduped = dedupe_events([broken, _event("Broken")])

    assert len(deduped) == 2


def test_merged_source_refs_do_not_depend_on_input_order():
    events = [
        _event("Board meeting", provider="google", minute=0, description="a"),
        _event("board meeting", provider="outlook", calendar_id="work", minute=1, description="bb"),
        _event(" Board  Meeting", provider="apple", calendar_id="home", minute=2, description="ccc"),
    ]

    ref_sets = []
    for ordering in permutations(events):
        deduped = dedupe_events(list(ordering))
        assert len(deduped) == 1
        assert deduped[0].description == "ccc"
        ref_sets.append(set(deduped[0].source_refs))

    assert all(refs == ref_sets[0] for refs in ref_sets)
    assert len(ref_sets[0]) == 3


def test_dedupe_is_idempotent():
    events = [
        _event("Team Sync", provider="google"),
        _event("team sync", provider="outlook", minute=2),
        _event("Lunch", provider="apple", minute=120),
    ]

    once = dedupe_events(events)
    twice = dedupe_events(once)

    assert twice == once


def test_inputs_are_not_modified():
    first = _event("Team Sync", provider="google")
    second = _event("Team Sync", provider="outlook")

    dedupe_events([first, second])

    assert first.source_refs == ()
    assert first.calendar_type is None


def test_non_string_titles_are_coerced_instead_of_failing():
    numeric = _event(123, provider="google")
    text = _event("123", provider="outlook", calendar_id="work", minute=1)

    deduped = dedupe_events([numeric, text])

    assert normalize_title(123) == "123"
    assert len(deduped) == 1
    assert {r.provider_type for r in deduped[0].source_refs} == {"google", "outlook"}
