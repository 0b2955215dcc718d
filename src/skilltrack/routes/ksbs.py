"""KSB progress routes."""

from flask import Blueprint, current_app, jsonify, request

from skilltrack.auth import json_error, learner_access_error, login_required
from skilltrack.models import EvidenceItem, KsbElement, OtjLogEntry
from skilltrack.progress import ksb_summary
from skilltrack.standards import profile_for

bp = Blueprint("ksbs", __name__, url_prefix="/api/ksb-progress")


def _focus_limit():
    limit = request.args.get("limit", current_app.config["FOCUS_AREA_LIMIT"], type=int)
    return max(0, min(limit, 50))


@bp.route("/<int:learner_id>")
@login_required
def progress(learner_id, ctx):
    """Achieved/total per KSB type and the KSBs most in need of evidence."""
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    profile = profile_for(learner_id)
    if profile is None:
        return json_error("Learner profile not found", 404)
    summary = ksb_summary(learner_id, profile.standard_id, _focus_limit())
    summary["standardId"] = profile.standard_id
    return jsonify(summary)


@bp.route("/<int:learner_id>/<code>")
@login_required
def detail(learner_id, code, ctx):
    """One KSB with the learner's linked evidence and the OTJ hours logged against it."""
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    profile = profile_for(learner_id)
    if profile is None or profile.standard_id is None:
        return json_error("Learner profile not found", 404)
    ksb = KsbElement.query.filter_by(standard_id=profile.standard_id, code=code.upper()).first()
    if ksb is None:
        return json_error("KSB not found", 404)

    evidence = (
        EvidenceItem.query.filter_by(learner_id=learner_id)
        .filter(EvidenceItem.ksbs.any(KsbElement.id == ksb.id))
        .order_by(EvidenceItem.created_at.desc())
        .all()
    )
    logs = (
        OtjLogEntry.query.filter_by(learner_id=learner_id, ksb_id=ksb.id)
        .filter(OtjLogEntry.status != "rejected")
        .all()
    )
    return jsonify({
        "ksb": ksb.to_dict(),
        "evidence": [e.to_dict() for e in evidence],
        "achieved": any(e.status == "approved" for e in evidence),
        "otjHours": round(sum(l.duration_minutes for l in logs) / 60, 2),
    })
