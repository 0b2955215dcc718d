"""Weekly OTJ timesheets: a learner's week totalled from their log, then tutor-reviewed.

Totals are never taken from the request.  Creating or refreshing a
timesheet re-runs the weekly aggregation over the learner's OTJ log, so a
timesheet always agrees with ``/api/otj-logs/weekly``.
"""

import logging
from datetime import date, datetime

from flask import Blueprint, jsonify, request

from skilltrack.auth import capability_required, json_error, learner_access_error, login_required
from skilltrack.models import User, WeeklyTimesheet, db
from skilltrack.otj_weekly import week_start
from skilltrack.progress import learner_minimum_hours, week_totals
from skilltrack.roles import Capability, Role
from skilltrack.standards import profile_for
from skilltrack.validation import as_id, parse_date

logger = logging.getLogger(__name__)

bp = Blueprint("timesheets", __name__, url_prefix="/api/weekly-timesheets")


def _recalculate(sheet, today=None):
    """Refresh *sheet*'s totals and status from the learner's current log."""
    today = today or date.today()
    _, _, minimum_hours = learner_minimum_hours(sheet.learner_id)
    week = week_totals(sheet.learner_id, sheet.week_start, minimum_hours=minimum_hours)
    sheet.total_minutes = week.total_minutes
    sheet.minimum_hours = minimum_hours
    sheet.met_requirement = week.meets_minimum
    if week.meets_minimum:
        sheet.status = "complete"
    elif sheet.week_start == week_start(today):
        # The week is still running; it can yet reach the minimum
        sheet.status = "pending"
    else:
        sheet.status = "incomplete"


def _load(ctx, sheet_id):
    """Return ``(sheet, None)`` if *ctx* may see the timesheet, else ``(None, response)``."""
    sheet = db.session.get(WeeklyTimesheet, sheet_id)
    if sheet is None:
        return None, json_error("Weekly timesheet not found", 404)
    denied = learner_access_error(ctx, sheet.learner_id)
    if denied:
        return None, denied
    return sheet, None


@bp.route("/<int:sheet_id>")
@login_required
def detail(sheet_id, ctx):
    sheet, error = _load(ctx, sheet_id)
    if error:
        return error
    return jsonify(sheet.to_dict())


@bp.route("/learner/<int:learner_id>")
@login_required
def list_for_learner(learner_id, ctx):
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    sheets = (
        WeeklyTimesheet.query.filter_by(learner_id=learner_id)
        .order_by(WeeklyTimesheet.week_start.desc())
        .all()
    )
    return jsonify([s.to_dict() for s in sheets])


@bp.route("/learner/<int:learner_id>/week/<week_date>")
@login_required
def for_week(learner_id, week_date, ctx):
    """The timesheet for the week containing *week_date* (any day of that week)."""
    day = parse_date(week_date)
    if day is None:
        return json_error("Invalid date format. Please use YYYY-MM-DD", 400)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    sheet = WeeklyTimesheet.query.filter_by(learner_id=learner_id, week_start=week_start(day)).first()
    if sheet is None:
        return json_error("Weekly timesheet not found", 404)
    return jsonify(sheet.to_dict())


@bp.route("", methods=["POST"])
@login_required
def create(ctx):
    """Open a timesheet for a week.

    Body: ``weekStart`` (any day in the week), optional ``learnerNotes`` and,
    for staff acting on a learner's behalf, ``learnerId``.
    """
    data = request.get_json(silent=True) or {}
    learner_id = as_id(data.get("learnerId", ctx.user_id))
    if learner_id is None:
        return json_error("Validation error", 422, errors={"learnerId": "Must be a user id"})
    if ctx.role is Role.LEARNER and learner_id != ctx.user_id:
        return json_error("Forbidden - You can only create timesheets for yourself", 403)
    learner = db.session.get(User, learner_id)
    if learner is None or learner.role != Role.LEARNER.value:
        return json_error("Learner not found", 404)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied

    day = parse_date(data.get("weekStart"))
    if day is None:
        return json_error("Validation error", 422, errors={"weekStart": "Week start is required (YYYY-MM-DD)"})
    start = week_start(day)
    if start > week_start(date.today()):
        return json_error("Validation error", 422, errors={"weekStart": "Week cannot be in the future"})
    if WeeklyTimesheet.query.filter_by(learner_id=learner_id, week_start=start).first() is not None:
        return json_error("A timesheet for this week already exists", 409)

    notes = data.get("learnerNotes")
    sheet = WeeklyTimesheet(
        learner_id=learner_id,
        week_start=start,
        learner_notes=notes.strip() if isinstance(notes, str) else "",
    )
    _recalculate(sheet)
    db.session.add(sheet)
    db.session.commit()
    logger.info(
        "Weekly timesheet %s opened for learner %s week %s (%s)",
        sheet.id, learner_id, start.isoformat(), sheet.status,
    )
    return jsonify(sheet.to_dict()), 201


@bp.route("/<int:sheet_id>", methods=["PUT"])
@login_required
def refresh(sheet_id, ctx):
    """Recalculate totals from the log and update ``learnerNotes``.

    A reviewed timesheet is locked except for back-office roles.
    """
    sheet, error = _load(ctx, sheet_id)
    if error:
        return error
    if sheet.reviewed_at is not None and not ctx.can(Capability.EDIT_LOCKED_RECORDS):
        return json_error("Forbidden - Cannot update a reviewed timesheet", 403)
    data = request.get_json(silent=True) or {}
    if "learnerNotes" in data:
        notes = data["learnerNotes"]
        if not isinstance(notes, str):
            return json_error("Validation error", 422, errors={"learnerNotes": "Must be text"})
        sheet.learner_notes = notes.strip()
    _recalculate(sheet)
    db.session.commit()
    return jsonify(sheet.to_dict())


@bp.route("/<int:sheet_id>/review", methods=["POST"])
@capability_required(Capability.VERIFY_OTJ)
def review(sheet_id, ctx):
    """Tutor or training-provider sign-off for a week, with optional ``notes``."""
    sheet = db.session.get(WeeklyTimesheet, sheet_id)
    if sheet is None:
        return json_error("Weekly timesheet not found", 404)
    if ctx.user_id == sheet.learner_id:
        return json_error("Forbidden - You cannot review your own timesheet", 403)
    profile = profile_for(sheet.learner_id)
    if not ctx.can(Capability.VIEW_ALL_LEARNERS):
        if profile is None or ctx.user_id not in (profile.tutor_id, profile.training_provider_id):
            return json_error("Forbidden - You are not authorized to review this learner's timesheets", 403)
    if sheet.reviewed_at is not None:
        return json_error("Timesheet has already been reviewed", 400)

    data = request.get_json(silent=True) or {}
    notes = data.get("notes")
    _recalculate(sheet)
    sheet.reviewer_id = ctx.user_id
    sheet.tutor_notes = notes.strip() if isinstance(notes, str) else ""
    sheet.reviewed_at = datetime.utcnow()
    db.session.commit()
    logger.info("Weekly timesheet %s reviewed by user %s (%s)", sheet.id, ctx.user_id, sheet.status)
    return jsonify(sheet.to_dict())
