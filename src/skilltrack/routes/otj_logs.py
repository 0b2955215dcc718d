"""OTJ log entry routes: CRUD, the verification workflow, weekly compliance and stats."""

import csv
import io
import logging
from collections import defaultdict
from datetime import date, datetime

from flask import Blueprint, Response, current_app, jsonify, request

from skilltrack.auth import capability_required, json_error, learner_access_error, login_required
from skilltrack.ksb_progress import code_sort_key
from skilltrack.models import FeedbackItem, OtjLogEntry, User, db
from skilltrack.progress import learner_minimum_hours, weekly_summary
from skilltrack.roles import Capability, Role
from skilltrack.standards import associated_learner_ids, ksb_error_for_learner, profile_for
from skilltrack.validation import as_id, validate_otj_entry

logger = logging.getLogger(__name__)

bp = Blueprint("otj_logs", __name__, url_prefix="/api/otj-logs")


def _load_entry(ctx, log_id):
    """Return ``(entry, None)`` if *ctx* may access the entry, else ``(None, response)``."""
    entry = db.session.get(OtjLogEntry, log_id)
    if entry is None:
        return None, json_error("OTJ log not found", 404)
    if ctx.user_id != entry.learner_id and not ctx.can(Capability.VIEW_ALL_LEARNERS):
        denied = learner_access_error(ctx, entry.learner_id)
        if denied:
            return None, json_error("Forbidden - You don't have access to this resource", 403)
    return entry, None


def _parse_date_arg(name):
    raw = request.args.get(name, "")
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


@bp.route("")
@login_required
def list_logs(ctx):
    """List log entries visible to the current user.

    Learners see their own entries, staff see their associated learners'
    entries, and back-office roles page through everything.
    """
    query = OtjLogEntry.query
    if ctx.role is Role.LEARNER:
        query = query.filter_by(learner_id=ctx.user_id)
    elif ctx.can(Capability.VIEW_ALL_LEARNERS):
        page = request.args.get("page", 1, type=int)
        limit = min(request.args.get("limit", 50, type=int), 200)
        entries = query.order_by(OtjLogEntry.date.desc(), OtjLogEntry.id.desc()).paginate(
            page=page, per_page=limit, error_out=False
        )
        return jsonify([e.to_dict() for e in entries.items])
    else:
        query = query.filter(OtjLogEntry.learner_id.in_(associated_learner_ids(ctx.user_id)))
    entries = query.order_by(OtjLogEntry.date.desc(), OtjLogEntry.id.desc()).all()
    return jsonify([e.to_dict() for e in entries])


@bp.route("/learner/<int:learner_id>")
@login_required
def list_for_learner(learner_id, ctx):
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    entries = (
        OtjLogEntry.query.filter_by(learner_id=learner_id)
        .order_by(OtjLogEntry.date.desc(), OtjLogEntry.id.desc())
        .all()
    )
    return jsonify([e.to_dict() for e in entries])


@bp.route("/date-range")
@login_required
def date_range(ctx):
    """Entries for ``learnerId`` between ``startDate`` and ``endDate`` inclusive."""
    learner_id = request.args.get("learnerId", type=int)
    start, end = _parse_date_arg("startDate"), _parse_date_arg("endDate")
    if learner_id is None or start is None or end is None:
        return json_error("Invalid parameters", 400)
    if end < start:
        return json_error("endDate must not be before startDate", 400)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    entries = (
        OtjLogEntry.query.filter_by(learner_id=learner_id)
        .filter(OtjLogEntry.date >= start, OtjLogEntry.date <= end)
        .order_by(OtjLogEntry.date)
        .all()
    )
    return jsonify([e.to_dict() for e in entries])


@bp.route("/<int:log_id>")
@login_required
def detail(log_id, ctx):
    entry, error = _load_entry(ctx, log_id)
    if error:
        return error
    return jsonify(entry.to_dict())


@bp.route("", methods=["POST"])
@login_required
def create(ctx):
    """Log a training session.

    Learners log for themselves; associated staff and back-office roles may
    log on a learner's behalf by passing ``learnerId``.
    """
    data = request.get_json(silent=True) or {}
    learner_id = as_id(data.get("learnerId", ctx.user_id))
    if learner_id is None:
        return json_error("Validation error", 422, errors={"learnerId": "Must be a user id"})

    if ctx.role is Role.LEARNER and learner_id != ctx.user_id:
        return json_error("Forbidden - You can only create logs for yourself", 403)
    learner = db.session.get(User, learner_id)
    if learner is None or learner.role != Role.LEARNER.value:
        return json_error("Learner not found", 404)
    if learner_id != ctx.user_id:
        denied = learner_access_error(ctx, learner_id)
        if denied:
            return denied

    cleaned, errors = validate_otj_entry(data)
    ksb_error = ksb_error_for_learner(cleaned.get("ksb_id"), learner_id)
    if ksb_error:
        errors["ksbId"] = ksb_error
    if errors:
        return json_error("Validation error", 422, errors=errors)

    entry = OtjLogEntry(learner_id=learner_id, **cleaned)
    db.session.add(entry)
    db.session.commit()
    logger.info("OTJ log %s created for learner %s by user %s", entry.id, learner_id, ctx.user_id)
    return jsonify(entry.to_dict()), 201


@bp.route("/<int:log_id>", methods=["PATCH"])
@login_required
def update(log_id, ctx):
    """Edit a draft entry; submitted entries are locked except for back-office roles."""
    entry, error = _load_entry(ctx, log_id)
    if error:
        return error
    if entry.status != "draft" and not ctx.can(Capability.EDIT_LOCKED_RECORDS):
        return json_error("Forbidden - Cannot update a submitted or verified log", 403)

    data = request.get_json(silent=True) or {}
    cleaned, errors = validate_otj_entry(data, partial=True)
    if "ksb_id" in cleaned:
        ksb_error = ksb_error_for_learner(cleaned["ksb_id"], entry.learner_id)
        if ksb_error:
            errors["ksbId"] = ksb_error
    if errors:
        return json_error("Validation error", 422, errors=errors)

    for field, value in cleaned.items():
        setattr(entry, field, value)
    db.session.commit()
    return jsonify(entry.to_dict())


@bp.route("/<int:log_id>", methods=["DELETE"])
@login_required
def delete(log_id, ctx):
    entry, error = _load_entry(ctx, log_id)
    if error:
        return error
    if entry.status != "draft" and not ctx.can(Capability.EDIT_LOCKED_RECORDS):
        return json_error("Forbidden - Cannot delete a submitted or verified log", 403)
    db.session.delete(entry)
    db.session.commit()
    return "", 204


@bp.route("/<int:log_id>/submit", methods=["POST"])
@login_required
def submit(log_id, ctx):
    entry, error = _load_entry(ctx, log_id)
    if error:
        return error
    if entry.status != "draft":
        return json_error("Only draft logs can be submitted", 400)
    entry.status = "submitted"
    db.session.commit()
    return jsonify(entry.to_dict())


@bp.route("/<int:log_id>/verify", methods=["POST"])
@capability_required(Capability.VERIFY_OTJ)
def verify(log_id, ctx):
    """First-level verification by the learner's tutor or training provider."""
    entry = db.session.get(OtjLogEntry, log_id)
    if entry is None:
        return json_error("OTJ log not found", 404)
    if entry.status != "submitted":
        return json_error("Only submitted logs can be verified", 400)
    profile = profile_for(entry.learner_id)
    if profile is None:
        return json_error("Learner profile not found", 404)
    if ctx.user_id == entry.learner_id:
        return json_error("Forbidden - You cannot verify your own logs", 403)
    if ctx.user_id not in (profile.tutor_id, profile.training_provider_id):
        return json_error("Forbidden - You are not authorized to verify this learner's logs", 403)

    entry.status = "approved"
    entry.verifier_id = ctx.user_id
    entry.verified_at = datetime.utcnow()
    db.session.commit()
    return jsonify(entry.to_dict())


@bp.route("/<int:log_id>/iqa-verify", methods=["POST"])
@capability_required(Capability.IQA_VERIFY)
def iqa_verify(log_id, ctx):
    """Second-level verification by the learner's IQA."""
    entry = db.session.get(OtjLogEntry, log_id)
    if entry is None:
        return json_error("OTJ log not found", 404)
    if entry.status != "approved" or entry.verifier_id is None:
        return json_error("Log must be verified by an assessor/training provider first", 400)
    profile = profile_for(entry.learner_id)
    if profile is None:
        return json_error("Learner profile not found", 404)
    if ctx.user_id == entry.learner_id:
        return json_error("Forbidden - You cannot verify your own logs", 403)
    if profile.iqa_id != ctx.user_id:
        return json_error("Forbidden - You are not the IQA for this learner", 403)

    entry.iqa_verifier_id = ctx.user_id
    entry.iqa_verified_at = datetime.utcnow()
    db.session.commit()
    return jsonify(entry.to_dict())


@bp.route("/<int:log_id>/reject", methods=["POST"])
@capability_required(Capability.VERIFY_OTJ)
def reject(log_id, ctx):
    """Reject a submitted entry; a feedback message for the learner is required."""
    entry = db.session.get(OtjLogEntry, log_id)
    if entry is None:
        return json_error("OTJ log not found", 404)
    if entry.status != "submitted":
        return json_error("Only submitted logs can be rejected", 400)
    profile = profile_for(entry.learner_id)
    if profile is None:
        return json_error("Learner profile not found", 404)
    if ctx.user_id not in profile.staff_ids():
        return json_error("Forbidden - You are not authorized to reject this learner's logs", 403)

    data = request.get_json(silent=True) or {}
    message = (data.get("feedbackMessage") or "").strip()
    if not message:
        return json_error("Feedback message is required when rejecting a log", 400)

    entry.status = "rejected"
    db.session.add(FeedbackItem(
        sender_id=ctx.user_id,
        recipient_id=entry.learner_id,
        message=message,
        related_item_type="otj_log",
        related_item_id=entry.id,
    ))
    db.session.commit()
    return jsonify(entry.to_dict())


def _lookback_arg():
    weeks = request.args.get("weeks", current_app.config["OTJ_LOOKBACK_WEEKS"], type=int)
    return max(1, min(weeks, 104))


@bp.route("/weekly/<int:learner_id>")
@login_required
def weekly(learner_id, ctx):
    """Weekly OTJ totals against the learner's minimum for the lookback window.

    Query args: ``weeks`` (window length) and ``anchor`` (any day in the most
    recent week, default today).
    """
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    anchor = date.today()
    if request.args.get("anchor"):
        anchor = _parse_date_arg("anchor")
        if anchor is None:
            return json_error("Invalid date format. Please use YYYY-MM-DD", 400)
    summary = weekly_summary(learner_id, _lookback_arg(), anchor=anchor)
    return jsonify(summary.to_dict())


@bp.route("/stats/<int:learner_id>")
@login_required
def stats(learner_id, ctx):
    """Total and verified hours, weekly compliance and hours per KSB."""
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    profile, _, minimum_hours = learner_minimum_hours(learner_id)
    if profile is None:
        return json_error("Learner profile not found", 404)

    entries = OtjLogEntry.query.filter_by(learner_id=learner_id).all()
    total_minutes = sum(e.duration_minutes for e in entries if e.status != "rejected")
    verified_minutes = sum(e.duration_minutes for e in entries if e.status == "approved")

    ksb_minutes: dict[int, int] = defaultdict(int)
    ksb_counts: dict[int, int] = defaultdict(int)
    ksbs = {}
    for e in entries:
        if e.ksb is None or e.status == "rejected":
            continue
        ksbs[e.ksb_id] = e.ksb
        ksb_minutes[e.ksb_id] += e.duration_minutes
        ksb_counts[e.ksb_id] += 1
    ksb_stats = [
        {
            "ksbId": ksb_id,
            "code": ksbs[ksb_id].code,
            "type": ksbs[ksb_id].type,
            "hours": round(ksb_minutes[ksb_id] / 60, 2),
            "entries": ksb_counts[ksb_id],
        }
        for ksb_id in sorted(ksbs, key=lambda i: code_sort_key(ksbs[i].code))
    ]

    weekly_stats = weekly_summary(learner_id, _lookback_arg(), minimum_hours=minimum_hours)
    return jsonify({
        "totalHours": round(total_minutes / 60, 2),
        "verifiedHours": round(verified_minutes / 60, 2),
        "minimumWeeklyHours": minimum_hours,
        "weeklyStats": weekly_stats.to_dict(),
        "ksbStats": ksb_stats,
    })


@bp.route("/export.csv")
@login_required
def export_csv(ctx):
    """Export a learner's log entries (default: the current user) as CSV."""
    learner_id = request.args.get("learnerId", ctx.user_id, type=int)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    entries = (
        OtjLogEntry.query.filter_by(learner_id=learner_id)
        .order_by(OtjLogEntry.date.desc())
        .all()
    )

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "date", "hours", "activity_type", "category", "status",
        "ksb", "description", "reflection",
    ])
    type_labels = dict(OtjLogEntry.ACTIVITY_TYPES)
    for e in entries:
        writer.writerow([
            e.date.isoformat(),
            round(e.hours, 2),
            type_labels.get(e.activity_type, e.activity_type),
            e.category,
            e.status,
            e.ksb.code if e.ksb else "",
            e.description,
            e.reflection or "",
        ])

    output.seek(0)
    return Response(
        output.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=otj-log-{learner_id}.csv"},
    )
