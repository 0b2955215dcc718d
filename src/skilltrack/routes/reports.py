"""Report routes: OTJ hours by week, month and activity, evidence and KSB coverage.

Every report covers one learner (``learnerId``, default the current user)
over a period chosen with ``timeframe`` or ``startDate``/``endDate``.
"""

import csv
import io
import logging

from flask import Blueprint, Response, current_app, jsonify, request

from skilltrack.auth import json_error, learner_access_error, login_required
from skilltrack.ksb_progress import approved_ksb_ids, calculate_progress, code_sort_key, overall_percent
from skilltrack.models import EvidenceItem, OtjLogEntry
from skilltrack.otj_weekly import aggregate_weekly
from skilltrack.progress import compliance_entries, learner_minimum_hours
from skilltrack.reports import (
    ReportPeriodError,
    completion_percent,
    minutes_by_activity_type,
    monthly_minutes,
    overall_completion,
    programme_target_hours,
    report_period,
    status_counts,
    weeks_spanned,
)
from skilltrack.standards import ksbs_for_standard

logger = logging.getLogger(__name__)

bp = Blueprint("reports", __name__, url_prefix="/api/reports")

EXPORT_TYPES = ("otj-logs", "evidence")


def _scope(ctx):
    """Return ``(learner_id, period, None)`` or ``(None, None, response)``."""
    learner_id = request.args.get("learnerId", ctx.user_id, type=int)
    try:
        period = report_period(
            request.args.get("timeframe"),
            request.args.get("startDate"),
            request.args.get("endDate"),
        )
    except ReportPeriodError as exc:
        return None, None, json_error(str(exc), 400)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return None, None, denied
    return learner_id, period, None


def _entries_in(learner_id, period):
    return (
        OtjLogEntry.query.filter_by(learner_id=learner_id)
        .filter(OtjLogEntry.date >= period.start, OtjLogEntry.date <= period.end)
        .order_by(OtjLogEntry.date, OtjLogEntry.id)
        .all()
    )


def _evidence_in(learner_id, period):
    items = EvidenceItem.query.filter_by(learner_id=learner_id).order_by(EvidenceItem.created_at).all()
    return [i for i in items if period.contains(i.created_at.date() if i.created_at else None)]


def _hours(minutes) -> float:
    return round(minutes / 60, 2)


@bp.route("/weekly-otj")
@login_required
def weekly_otj(ctx):
    learner_id, period, error = _scope(ctx)
    if error:
        return error
    _, _, minimum_hours = learner_minimum_hours(learner_id)
    weekly = aggregate_weekly(
        [e for e in compliance_entries(learner_id) if period.contains(e.date)],
        anchor=period.end,
        minimum_hours=minimum_hours,
        lookback_weeks=weeks_spanned(period),
    )
    entries = _entries_in(learner_id, period)
    counts = status_counts(entries, [s for s, _ in OtjLogEntry.STATUSES])
    return jsonify({
        "period": period.to_dict(),
        "weeklyData": weekly.to_dict(),
        "summary": {
            "totalHours": _hours(weekly.total_minutes),
            "compliantWeeks": weekly.compliant_weeks,
            "totalWeeks": len(weekly.weeks),
            "completedEntries": counts["approved"],
            "pendingEntries": counts["submitted"],
            "rejectedEntries": counts["rejected"],
        },
    })


@bp.route("/monthly-otj")
@login_required
def monthly_otj(ctx):
    learner_id, period, error = _scope(ctx)
    if error:
        return error
    months = monthly_minutes(compliance_entries(learner_id), period)
    total = sum(m for _, m in months)
    return jsonify({
        "period": period.to_dict(),
        "monthlyData": [{"month": key, "totalHours": _hours(minutes)} for key, minutes in months],
        "summary": {
            "totalHours": _hours(total),
            "averageHoursPerMonth": _hours(total / len(months)) if months else 0,
        },
    })


@bp.route("/otj-activity-types")
@login_required
def otj_activity_types(ctx):
    learner_id, period, error = _scope(ctx)
    if error:
        return error
    entries = [e for e in _entries_in(learner_id, period) if e.status != "rejected"]
    by_type = minutes_by_activity_type(entries)
    labels = dict(OtjLogEntry.ACTIVITY_TYPES)
    return jsonify({
        "period": period.to_dict(),
        "activityTypes": [
            {"activityType": t, "label": labels.get(t, t), "totalHours": _hours(m)} for t, m in by_type.items()
        ],
        "summary": {
            "topActivityType": next(iter(by_type), None),
            "activityTypesCount": len(by_type),
            "totalHours": _hours(sum(by_type.values())),
        },
    })


@bp.route("/evidence-status")
@login_required
def evidence_status(ctx):
    learner_id, period, error = _scope(ctx)
    if error:
        return error
    counts = status_counts(_evidence_in(learner_id, period), [s for s, _ in EvidenceItem.STATUSES])
    return jsonify({
        "period": period.to_dict(),
        "statusCounts": counts,
        "summary": {
            "total": sum(counts.values()),
            "approved": counts["approved"],
            "pending": counts["submitted"] + counts["in_review"],
            "needsRevision": counts["needs_revision"],
        },
    })


def _ksb_rows(learner_id):
    profile, _, _ = learner_minimum_hours(learner_id)
    ksbs = ksbs_for_standard(profile.standard_id if profile else None)
    evidence = EvidenceItem.query.filter_by(learner_id=learner_id).all()
    return profile, ksbs, evidence


@bp.route("/ksb-coverage")
@login_required
def ksb_coverage(ctx):
    """KSBs with any linked evidence (covered) and with approved evidence (achieved)."""
    learner_id, _, error = _scope(ctx)
    if error:
        return error
    _, ksbs, evidence = _ksb_rows(learner_id)
    linked = {k.id for item in evidence for k in item.ksbs}
    approved = approved_ksb_ids(evidence)
    covered = sum(1 for k in ksbs if k.id in linked)
    uncovered = sorted((k.code for k in ksbs if k.id not in linked), key=code_sort_key)
    return jsonify({
        "totalKsbs": len(ksbs),
        "coveredKsbs": covered,
        "achievedKsbs": sum(1 for k in ksbs if k.id in approved),
        "percentCovered": round(covered / len(ksbs) * 100, 1) if ksbs else 0.0,
        "uncoveredKsbs": uncovered,
        "progress": [p.to_dict() for p in calculate_progress(ksbs, evidence)],
    })


def _otj_progress(learner_id):
    profile, _, minimum_hours = learner_minimum_hours(learner_id)
    target = programme_target_hours(
        minimum_hours,
        profile.start_date if profile else None,
        profile.expected_end_date if profile else None,
        current_app.config["OTJ_TARGET_HOURS"],
    )
    approved = OtjLogEntry.query.filter_by(learner_id=learner_id, category="otj", status="approved").all()
    hours = sum(e.duration_minutes for e in approved) / 60
    return hours, target


@bp.route("/otj-hours-progress")
@login_required
def otj_hours_progress(ctx):
    learner_id, _, error = _scope(ctx)
    if error:
        return error
    hours, target = _otj_progress(learner_id)
    return jsonify({
        "currentHours": round(hours, 2),
        "targetHours": target,
        "percentComplete": round(completion_percent(hours, target), 1),
        "remaining": round(max(0.0, target - hours), 2),
    })


@bp.route("/overall-completion")
@login_required
def completion(ctx):
    """Approved OTJ hours against target and approved KSBs, weighted equally."""
    learner_id, _, error = _scope(ctx)
    if error:
        return error
    hours, target = _otj_progress(learner_id)
    _, ksbs, evidence = _ksb_rows(learner_id)
    otj = completion_percent(hours, target)
    ksb = overall_percent(calculate_progress(ksbs, evidence))
    return jsonify({
        "otjCompletion": round(otj, 1),
        "ksbCompletion": round(ksb, 1),
        "overallPercent": overall_completion(otj, ksb),
    })


@bp.route("/export")
@login_required
def export(ctx):
    """CSV export of ``reportType`` (``otj-logs`` or ``evidence``) for the period."""
    report_type = request.args.get("reportType", "")
    if report_type not in EXPORT_TYPES:
        return json_error("Invalid report type. Must be 'otj-logs' or 'evidence'", 400)
    learner_id, period, error = _scope(ctx)
    if error:
        return error

    output = io.StringIO()
    writer = csv.writer(output)
    if report_type == "otj-logs":
        labels = dict(OtjLogEntry.ACTIVITY_TYPES)
        writer.writerow(["Date", "Hours", "Category", "Activity Type", "Description", "Status"])
        for e in _entries_in(learner_id, period):
            writer.writerow([
                e.date.isoformat(), round(e.hours, 2), e.category,
                labels.get(e.activity_type, e.activity_type), e.description, e.status,
            ])
    else:
        writer.writerow(["Date", "Title", "Type", "Status", "KSBs"])
        for item in _evidence_in(learner_id, period):
            codes = sorted((k.code for k in item.ksbs), key=code_sort_key)
            writer.writerow([
                item.created_at.date().isoformat(), item.title, item.evidence_type, item.status, " ".join(codes),
            ])

    filename = f"{report_type}-{period.start.isoformat()}-to-{period.end.isoformat()}.csv"
    logger.info("Report %s exported for learner %s by user %s", report_type, learner_id, ctx.user_id)
    return Response(
        output.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
