"""Dashboard route - overview of OTJ hours, KSB coverage, tasks and recent activity."""

import logging
from datetime import date

from flask import Blueprint, current_app, g, jsonify, request

from skilltrack.auth import json_error, learner_access_error, login_required
from skilltrack.models import EvidenceItem, FeedbackItem, Task, User, db
from skilltrack.progress import ksb_summary, learner_minimum_hours, weekly_summary

logger = logging.getLogger(__name__)

bp = Blueprint("dashboard", __name__, url_prefix="/api")

RECENT_EVIDENCE_LIMIT = 5
UPCOMING_TASK_LIMIT = 5


@bp.route("/dashboard")
@login_required
def index(ctx):
    """Return everything the learner dashboard renders in one response.

    The chain is user -> learner profile -> apprenticeship standard.  A
    missing profile is a 404 (nothing useful can be shown without it); a
    missing standard falls back to the default weekly minimum so the OTJ
    tracker still renders.

    Staff pass ``learnerId`` to view one of their learners' dashboards.
    """
    learner_id = request.args.get("learnerId", ctx.user_id, type=int)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    learner = g.user if learner_id == ctx.user_id else db.session.get(User, learner_id)
    if learner is None:
        return json_error("Learner not found", 404)

    profile, standard, minimum_hours = learner_minimum_hours(learner_id)
    if profile is None:
        logger.info("Dashboard requested for user %s with no learner profile", learner_id)
        return json_error("Learner profile not found", 404)

    weekly = weekly_summary(
        learner_id,
        current_app.config["OTJ_LOOKBACK_WEEKS"],
        anchor=date.today(),
        minimum_hours=minimum_hours,
    )
    current = weekly.current_week

    recent_evidence = (
        EvidenceItem.query.filter_by(learner_id=learner_id)
        .order_by(EvidenceItem.created_at.desc(), EvidenceItem.id.desc())
        .limit(RECENT_EVIDENCE_LIMIT)
        .all()
    )
    open_tasks = (
        Task.query.filter_by(assigned_to_id=learner_id)
        .filter(Task.status.in_(Task.OPEN_STATUSES))
        .order_by(Task.due_date, Task.id)
        .all()
    )
    unread = (
        FeedbackItem.query.filter_by(recipient_id=learner_id, read=False)
        .order_by(FeedbackItem.created_at.desc())
        .all()
    )

    return jsonify({
        "user": learner.to_dict(),
        "profile": profile.to_dict(),
        "standard": standard.to_dict() if standard else None,
        "otj": {
            "minimumOtjHours": minimum_hours,
            "currentWeek": current.to_dict() if current else None,
            "weekly": weekly.to_dict(),
        },
        "ksb": ksb_summary(learner_id, profile.standard_id, current_app.config["FOCUS_AREA_LIMIT"]),
        "recentEvidence": [e.to_dict() for e in recent_evidence],
        "unreadFeedback": [f.to_dict() for f in unread],
        "unreadFeedbackCount": len(unread),
        "upcomingTasks": [t.to_dict() for t in open_tasks[:UPCOMING_TASK_LIMIT]],
        "openTaskCount": len(open_tasks),
    })

