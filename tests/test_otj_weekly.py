"""Tests for the weekly OTJ aggregator."""

import logging
from datetime import date, datetime, timedelta

import pytest

from skilltrack.otj_weekly import WeekSummary, aggregate_weekly, week_start

# A Wednesday; its week runs Mon 2024-03-11 .. Sun 2024-03-17
ANCHOR = date(2024, 3, 13)
MONDAY = date(2024, 3, 11)


def _entry(day, minutes, entry_id=None):
    return {"id": entry_id, "date": day, "duration_minutes": minutes}


# ---------------------------------------------------------------------------
# week_start
# ---------------------------------------------------------------------------


def test_week_start_is_monday_for_every_day_of_the_week():
    for offset in range(7):
        assert week_start(MONDAY + timedelta(days=offset)) == MONDAY


def test_week_start_honours_custom_first_day():
    """With Sunday (6) as first day, Wednesday belongs to the preceding Sunday."""
    assert week_start(ANCHOR, week_starts_on=6) == date(2024, 3, 10)


# ---------------------------------------------------------------------------
# Buckets
# ---------------------------------------------------------------------------


def test_empty_input_yields_zero_weeks():
    result = aggregate_weekly([], anchor=ANCHOR, minimum_hours=6)
    assert len(result.weeks) == 8
    assert all(w.total_minutes == 0 for w in result.weeks)
    assert not any(w.meets_minimum for w in result.weeks)
    assert result.compliant_weeks == 0


def test_weeks_are_oldest_first_and_end_with_anchor_week():
    result = aggregate_weekly([], anchor=ANCHOR, minimum_hours=6, lookback_weeks=3)
    starts = [w.week_start for w in result.weeks]
    assert starts == [MONDAY - timedelta(weeks=2), MONDAY - timedelta(weeks=1), MONDAY]
    assert result.current_week.week_start == MONDAY


def test_monday_and_wednesday_entries_share_a_week_below_minimum():
    entries = [_entry(MONDAY, 120), _entry(MONDAY + timedelta(days=2), 60)]
    result = aggregate_weekly(entries, anchor=ANCHOR, minimum_hours=6)
    week = result.current_week
    assert week.total_minutes == 180
    assert week.meets_minimum is False
    assert week.remaining_hours == pytest.approx(3.0)
    assert week.percent_of_minimum == pytest.approx(50.0)


def test_sunday_belongs_to_the_week_that_started_on_monday():
    entries = [_entry(MONDAY + timedelta(days=6), 60), _entry(MONDAY + timedelta(days=7), 30)]
    result = aggregate_weekly(entries, anchor=MONDAY + timedelta(days=7), minimum_hours=6, lookback_weeks=2)
    assert [w.total_minutes for w in result.weeks] == [60, 30]


def test_week_meeting_minimum_exactly_is_compliant():
    result = aggregate_weekly([_entry(MONDAY, 360)], anchor=ANCHOR, minimum_hours=6)
    assert result.current_week.meets_minimum is True
    assert result.compliant_weeks == 1
    assert result.current_week.percent_of_minimum == 100.0


def test_percent_is_capped_at_100():
    result = aggregate_weekly([_entry(MONDAY, 600)], anchor=ANCHOR, minimum_hours=6)
    assert result.current_week.percent_of_minimum == 100.0
    assert result.current_week.remaining_hours == 0.0


def test_zero_minimum_counts_every_week_as_met():
    result = aggregate_weekly([], anchor=ANCHOR, minimum_hours=0, lookback_weeks=2)
    assert all(w.meets_minimum for w in result.weeks)
    assert all(w.percent_of_minimum == 100.0 for w in result.weeks)


def test_weekly_totals_sum_to_valid_entries_in_window():
    entries = [
        _entry(MONDAY - timedelta(weeks=w) + timedelta(days=d), 30 + 15 * d)
        for w in range(4)
        for d in range(3)
    ]
    result = aggregate_weekly(entries, anchor=ANCHOR, minimum_hours=6, lookback_weeks=4)
    assert result.total_minutes == sum(e["duration_minutes"] for e in entries)
    assert result.outside_window == 0


def test_entries_outside_window_are_counted_not_summed():
    entries = [
        _entry(MONDAY - timedelta(weeks=8), 120),  # one week too old
        _entry(MONDAY + timedelta(days=7), 120),  # next week
        _entry(MONDAY, 60),
    ]
    result = aggregate_weekly(entries, anchor=ANCHOR, minimum_hours=6)
    assert result.total_minutes == 60
    assert result.outside_window == 2


# ---------------------------------------------------------------------------
# Input shapes and bad data
# ---------------------------------------------------------------------------


class _Row:
    def __init__(self, day, minutes):
        self.id = 1
        self.date = day
        self.duration_minutes = minutes


def test_accepts_objects_datetimes_and_iso_strings():
    entries = [
        _Row(MONDAY, 30),
        _entry(datetime(2024, 3, 12, 9, 30), 45),
        _entry("2024-03-13", 60),
        _entry("2024-03-14T10:00:00", 15),
    ]
    result = aggregate_weekly(entries, anchor=ANCHOR, minimum_hours=6)
    assert result.current_week.total_minutes == 150
    assert result.skipped_entries == 0


def test_invalid_entries_are_skipped_and_logged(caplog):
    entries = [
        _entry("not-a-date", 60, entry_id=7),
        _entry(None, 60, entry_id=8),
        _entry(MONDAY, -30, entry_id=9),
        _entry(MONDAY, None),
        _entry(MONDAY, 90),
    ]
    with caplog.at_level(logging.WARNING, logger="skilltrack.otj_weekly"):
        result = aggregate_weekly(entries, anchor=ANCHOR, minimum_hours=6)

    assert result.current_week.total_minutes == 90
    assert result.skipped_entries == 4
    assert result.skipped_ids == [7, 8, 9]
    assert "skipped 4 entries" in caplog.text


def test_to_dict_reports_skipped_entries():
    result = aggregate_weekly([_entry("2024-02-30", 60, entry_id=3)], anchor=ANCHOR, minimum_hours=6)
    data = result.to_dict()
    assert data["skippedEntries"] == 1
    assert data["skippedEntryIds"] == [3]
    assert data["minimumOtjHours"] == 6
    assert len(data["weeks"]) == 8


def test_lookback_must_be_positive():
    with pytest.raises(ValueError):
        aggregate_weekly([], anchor=ANCHOR, minimum_hours=6, lookback_weeks=0)


def test_week_summary_to_dict():
    summary = WeekSummary(week_start=MONDAY, total_minutes=90, minimum_hours=6)
    assert summary.to_dict() == {
        "weekStart": "2024-03-11",
        "weekEnd": "2024-03-17",
        "totalMinutes": 90,
        "totalHours": 1.5,
        "meetsMinimum": False,
        "remainingHours": 4.5,
        "percentOfMinimum": 25.0,
    }
