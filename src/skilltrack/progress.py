"""Per-learner progress -- loads a learner's rows and runs the aggregators over them."""

from datetime import date

from skilltrack.ksb_progress import calculate_progress, find_focus_areas, overall_percent
from skilltrack.models import EvidenceItem, OtjLogEntry
from skilltrack.otj_weekly import aggregate_weekly
from skilltrack.standards import ksbs_for_standard, profile_for, resolve_minimum_otj_hours, standard_for_profile

# Only off-the-job sessions count towards the weekly minimum
COMPLIANCE_CATEGORY = "otj"
EXCLUDED_STATUSES = ("rejected",)


def compliance_entries(learner_id: int):
    """Return the learner's log entries that count towards the weekly minimum."""
    return (
        OtjLogEntry.query.filter_by(learner_id=learner_id, category=COMPLIANCE_CATEGORY)
        .filter(OtjLogEntry.status.notin_(EXCLUDED_STATUSES))
        .all()
    )


def learner_minimum_hours(learner_id: int):
    """Resolve learner -> profile -> standard; return (profile, standard, minimum_hours)."""
    profile = profile_for(learner_id)
    standard = standard_for_profile(profile)
    return profile, standard, resolve_minimum_otj_hours(standard)


def weekly_summary(learner_id: int, lookback_weeks: int, anchor=None, minimum_hours=None):
    """Aggregate the learner's OTJ entries into weeks ending with *anchor*'s week."""
    if minimum_hours is None:
        _, _, minimum_hours = learner_minimum_hours(learner_id)
    return aggregate_weekly(
        compliance_entries(learner_id),
        anchor=anchor or date.today(),
        minimum_hours=minimum_hours,
        lookback_weeks=lookback_weeks,
    )


def week_totals(learner_id: int, day: date, minimum_hours=None):
    """Return the :class:`WeekSummary` for the week containing *day*."""
    return weekly_summary(learner_id, 1, anchor=day, minimum_hours=minimum_hours).current_week


def ksb_summary(learner_id: int, standard_id, focus_limit: int) -> dict:
    """Return KSB progress per type, the overall percentage and focus areas.

    Types with no KSBs in the standard are reported with ``applicable``
    false so clients can show them as "not applicable".
    """
    ksbs = ksbs_for_standard(standard_id)
    evidence = EvidenceItem.query.filter_by(learner_id=learner_id).all()
    items = calculate_progress(ksbs, evidence)
    return {
        "progress": [i.to_dict() for i in items],
        "overallPercent": round(overall_percent(items), 1),
        "focusAreas": [a.to_dict() for a in find_focus_areas(ksbs, evidence, limit=focus_limit)],
    }
