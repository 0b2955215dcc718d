"""Report calculations: reporting periods, totals by month and type, completion.

Pure functions over already-loaded rows; the ``/api/reports`` routes load
the rows and turn the results into JSON.
"""

import calendar
import math
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, timedelta

from skilltrack.otj_weekly import week_start

TIMEFRAMES = ("week", "month", "quarter", "year")
DEFAULT_PERIOD_DAYS = 7

# Weights for the overall completion figure
OTJ_WEIGHT = 0.5
KSB_WEIGHT = 0.5


class ReportPeriodError(ValueError):
    """Raised when a requested reporting period cannot be interpreted."""


@dataclass(frozen=True)
class ReportPeriod:
    start: date
    end: date  # inclusive

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day) -> bool:
        return day is not None and self.start <= day <= self.end

    def to_dict(self):
        return {"startDate": self.start.isoformat(), "endDate": self.end.isoformat()}


def report_period(timeframe=None, start=None, end=None, today=None) -> ReportPeriod:
    """Resolve the period a report covers.

    An explicit ``start``/``end`` pair (ISO strings) wins; otherwise
    *timeframe* selects the calendar week, month, quarter or year containing
    *today*.  With neither, the period is the last seven days.
    """
    today = today or date.today()
    if start or end:
        if not (start and end):
            raise ReportPeriodError("startDate and endDate must be given together")
        try:
            first, last = date.fromisoformat(start), date.fromisoformat(end)
        except (TypeError, ValueError):
            raise ReportPeriodError("Invalid date format. Please use YYYY-MM-DD") from None
        if last < first:
            raise ReportPeriodError("endDate must not be before startDate")
        return ReportPeriod(first, last)

    if not timeframe:
        return ReportPeriod(today - timedelta(days=DEFAULT_PERIOD_DAYS), today)
    if timeframe == "week":
        first = week_start(today)
        return ReportPeriod(first, first + timedelta(days=6))
    if timeframe == "month":
        return ReportPeriod(today.replace(day=1), _month_end(today.year, today.month))
    if timeframe == "quarter":
        first_month = 3 * ((today.month - 1) // 3) + 1
        return ReportPeriod(date(today.year, first_month, 1), _month_end(today.year, first_month + 2))
    if timeframe == "year":
        return ReportPeriod(date(today.year, 1, 1), date(today.year, 12, 31))
    raise ReportPeriodError(f"timeframe must be one of: {', '.join(TIMEFRAMES)}")


def _month_end(year, month) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def weeks_spanned(period: ReportPeriod) -> int:
    """Number of Monday-start weeks that overlap *period*."""
    return (week_start(period.end) - week_start(period.start)).days // 7 + 1


def monthly_minutes(entries, period: ReportPeriod):
    """Return ``[(YYYY-MM, minutes)]`` for every month overlapping *period*, oldest first."""
    totals: dict[str, int] = defaultdict(int)
    for e in entries:
        if period.contains(e.date):
            totals[e.date.strftime("%Y-%m")] += e.duration_minutes
    months = []
    cursor = period.start.replace(day=1)
    while cursor <= period.end:
        key = cursor.strftime("%Y-%m")
        months.append((key, totals.get(key, 0)))
        cursor = _month_end(cursor.year, cursor.month) + timedelta(days=1)
    return months


def minutes_by_activity_type(entries):
    """Return ``{activity_type: minutes}`` ordered by minutes, most first."""
    totals: Counter = Counter()
    for e in entries:
        totals[e.activity_type] += e.duration_minutes
    return dict(totals.most_common())


def status_counts(rows, statuses):
    """Count *rows* per status; every status in *statuses* appears, even at zero."""
    counts = {s: 0 for s in statuses}
    for row in rows:
        counts[row.status] = counts.get(row.status, 0) + 1
    return counts


def programme_target_hours(minimum_weekly_hours, start, end, fallback):
    """OTJ hours expected over a programme: the weekly minimum for every week it runs.

    Without both dates the configured *fallback* target is used.
    """
    if start is None or end is None or end < start:
        return float(fallback)
    weeks = math.ceil(((end - start).days + 1) / 7)
    return float(minimum_weekly_hours * weeks)


def completion_percent(done, target) -> float:
    if target <= 0:
        return 100.0
    return min(100.0, done / target * 100)


def overall_completion(otj_percent, ksb_percent) -> int:
    return round(OTJ_WEIGHT * otj_percent + KSB_WEIGHT * ksb_percent)
