from datetime import date, datetime, time, timezone

from zeitcal.routines import build_routine_events, parse_time_of_day


def test_parse_time_of_day_formats():
    assert parse_time_of_day("7:00 AM") == time(7, 0)
    assert parse_time_of_day("12:15 am") == time(0, 15)
    assert parse_time_of_day("12:00 PM") == time(12, 0)
    assert parse_time_of_day("07:30") == time(7, 30)
    assert parse_time_of_day("7 PM") == time(19, 0)
    assert parse_time_of_day("") is None
    assert parse_time_of_day("after lunch") is None


def test_weekday_and_weekend_routines_become_weekly_definitions():
    routines = {
        "weekday": {
            "wakeTime": "6:30 AM",
            "meals": {"breakfast": "7:00", "lunch": "12:30", "dinner": "7 PM"},
            "workStart": "9:00",
            "workEnd": "17:30",
            "exercise": {"time": "6:00 PM", "days": ["Monday", "Thursday"], "duration": "45"},
            "bedtime": "whenever",
        },
        "weekend": {"wakeTime": "8:00 AM", "meals": {"lunch": "1 PM"}},
    }

    events = build_routine_events(routines, date(2026, 1, 5), timezone.utc)
    by_title = {e.title: e for e in events}

    assert list(by_title) == [
        "Wake Up",
        "Breakfast",
        "Work Start",
        "Lunch",
        "Work End",
        "Exercise",
        "Dinner",
        "Wake Up (Weekend)",
        "Lunch (Weekend)",
    ]
    assert by_title["Breakfast"].start == datetime(2026, 1, 5, 7, 0, tzinfo=timezone.utc)
    assert by_title["Breakfast"].end == datetime(2026, 1, 5, 7, 30, tzinfo=timezone.utc)
    assert by_title["Lunch"].recurrence.days_of_week == (1, 2, 3, 4, 5)
    assert by_title["Exercise"].recurrence.days_of_week == (1, 4)
    assert (by_title["Exercise"].end - by_title["Exercise"].start).total_seconds() == 45 * 60
    assert by_title["Lunch (Weekend)"].recurrence.days_of_week == (0, 6)
    assert all(e.source == "local" and e.id.startswith("local_") for e in events)
    assert len({e.id for e in events}) == len(events)


def test_exercise_duration_defaults_to_an_hour():
    routines = {"weekday": {"exercise": {"time": "6:00", "days": ["Friday"]}}}

    (exercise,) = build_routine_events(routines, date(2026, 1, 5), timezone.utc)

    assert (exercise.end - exercise.start).total_seconds() == 3600
    assert exercise.recurrence.days_of_week == (5,)
