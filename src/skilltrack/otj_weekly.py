"""Weekly OTJ aggregation -- buckets log entries into weeks and checks compliance."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

logger = logging.getLogger(__name__)

MONDAY = 0
DEFAULT_LOOKBACK_WEEKS = 8


@dataclass(frozen=True)
class WeekSummary:
    """Totals for one week bucket: ``week_start <= date < week_start + 7 days``."""

    week_start: date
    total_minutes: int
    minimum_hours: float

    @property
    def week_end(self) -> date:
        """Last day inside the bucket (inclusive)."""
        return self.week_start + timedelta(days=6)

    @property
    def total_hours(self) -> float:
        return self.total_minutes / 60

    @property
    def meets_minimum(self) -> bool:
        return self.total_minutes / 60 >= self.minimum_hours

    @property
    def remaining_hours(self) -> float:
        return max(0.0, self.minimum_hours - self.total_hours)

    @property
    def percent_of_minimum(self) -> float:
        if self.minimum_hours <= 0:
            return 100.0
        return min(100.0, self.total_hours / self.minimum_hours * 100)

    def to_dict(self):
        return {
            "weekStart": self.week_start.isoformat(),
            "weekEnd": self.week_end.isoformat(),
            "totalMinutes": self.total_minutes,
            "totalHours": round(self.total_hours, 2),
            "meetsMinimum": self.meets_minimum,
            "remainingHours": round(self.remaining_hours, 2),
            "percentOfMinimum": round(self.percent_of_minimum, 1),
        }


@dataclass
class WeeklyAggregation:
    """Result of :func:`aggregate_weekly`, oldest week first."""

    weeks: list[WeekSummary]
    minimum_hours: float
    skipped_entries: int = 0
    outside_window: int = 0
    skipped_ids: list = field(default_factory=list)

    @property
    def total_minutes(self) -> int:
        return sum(w.total_minutes for w in self.weeks)

    @property
    def compliant_weeks(self) -> int:
        return sum(1 for w in self.weeks if w.meets_minimum)

    @property
    def current_week(self):
        return self.weeks[-1] if self.weeks else None

    def to_dict(self):
        return {
            "minimumOtjHours": self.minimum_hours,
            "weeks": [w.to_dict() for w in self.weeks],
            "totalMinutes": self.total_minutes,
            "compliantWeeks": self.compliant_weeks,
            "skippedEntries": self.skipped_entries,
            "skippedEntryIds": list(self.skipped_ids),
            "outsideWindow": self.outside_window,
        }


def week_start(day: date, week_starts_on: int = MONDAY) -> date:
    """Return the first day of the week containing *day*.

    *week_starts_on* uses ``date.weekday()`` numbering (Monday is 0).
    """
    return day - timedelta(days=(day.weekday() - week_starts_on) % 7)


def _field(entry, name):
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def _coerce_date(value):
    """Return *value* as a ``date``, or None if it cannot be interpreted as one."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _coerce_minutes(value):
    if isinstance(value, bool) or value is None:
        return None
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes >= 0 else None


def aggregate_weekly(
    entries,
    anchor: date,
    minimum_hours: float,
    lookback_weeks: int = DEFAULT_LOOKBACK_WEEKS,
    week_starts_on: int = MONDAY,
) -> WeeklyAggregation:
    """Sum OTJ log entries into the *lookback_weeks* weeks ending with *anchor*'s week.

    Args:
        entries: Iterable of log entries.  Each exposes ``date`` and
            ``duration_minutes`` either as attributes (ORM rows) or as
            mapping keys.  ``date`` may be a ``date``, ``datetime`` or ISO
            string.
        anchor: Any day in the most recent week to report (usually today).
        minimum_hours: Weekly OTJ minimum that a week must reach to comply.
        lookback_weeks: Number of weeks to report, including the anchor week.
        week_starts_on: Weekday that opens a bucket (``date.weekday()``
            numbering, Monday by default).

    Returns:
        A :class:`WeeklyAggregation` with exactly *lookback_weeks* weeks,
        oldest first.  Weeks without entries have a zero total.  Entries
        with an unusable date or duration are counted in
        ``skipped_entries``; entries dated outside the window are counted
        in ``outside_window``.  Neither kind contributes to any week.
    """
    if lookback_weeks < 1:
        raise ValueError("lookback_weeks must be at least 1")

    last_start = week_start(anchor, week_starts_on)
    first_start = last_start - timedelta(weeks=lookback_weeks - 1)
    window_end = last_start + timedelta(days=7)

    totals: dict[date, int] = defaultdict(int)
    skipped = 0
    skipped_ids = []
    outside = 0
    for entry in entries:
        day = _coerce_date(_field(entry, "date"))
        minutes = _coerce_minutes(_field(entry, "duration_minutes"))
        if day is None or minutes is None:
            skipped += 1
            entry_id = _field(entry, "id")
            if entry_id is not None:
                skipped_ids.append(entry_id)
            continue
        if not first_start <= day < window_end:
            outside += 1
            continue
        totals[week_start(day, week_starts_on)] += minutes

    if skipped:
        logger.warning(
            "Weekly OTJ aggregation skipped %d entr%s with an invalid date or duration (ids=%s)",
            skipped, "y" if skipped == 1 else "ies", skipped_ids,
        )

    weeks = [
        WeekSummary(
            week_start=start,
            total_minutes=totals.get(start, 0),
            minimum_hours=minimum_hours,
        )
        for start in (first_start + timedelta(weeks=i) for i in range(lookback_weeks))
    ]
    return WeeklyAggregation(
        weeks=weeks,
        minimum_hours=minimum_hours,
        skipped_entries=skipped,
        outside_window=outside,
        skipped_ids=skipped_ids,
    )
