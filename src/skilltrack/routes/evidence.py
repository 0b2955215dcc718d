"""Portfolio evidence routes: submit, edit, and staff review."""

import logging
from datetime import date, datetime

from flask import Blueprint, jsonify, request

from skilltrack.auth import capability_required, json_error, learner_access_error, login_required
from skilltrack.models import EvidenceItem, FeedbackItem, KsbElement, db
from skilltrack.roles import Capability, Role
from skilltrack.standards import associated_learner_ids, profile_for
from skilltrack.validation import validate_evidence

logger = logging.getLogger(__name__)

bp = Blueprint("evidence", __name__, url_prefix="/api/evidence")

REVIEW_DECISIONS = ("approved", "needs_revision")


def _resolve_ksbs(ksb_ids, learner_id):
    """Return ``(ksbs, error)`` for *ksb_ids*, restricted to the learner's standard."""
    ksbs = KsbElement.query.filter(KsbElement.id.in_(ksb_ids)).all()
    if len(ksbs) != len(ksb_ids):
        return None, "Unknown KSB"
    profile = profile_for(learner_id)
    if profile is not None and profile.standard_id is not None:
        if any(k.standard_id != profile.standard_id for k in ksbs):
            return None, "KSBs must belong to the learner's apprenticeship standard"
    return ksbs, None


def _apply(item, cleaned):
    for field, value in cleaned.items():
        if field == "ksb_ids":
            continue
        setattr(item, field, value)
    if cleaned.get("status") == "submitted":
        item.submission_date = date.today()


@bp.route("", methods=["POST"])
@login_required
def create(ctx):
    if ctx.role is not Role.LEARNER:
        return json_error("Forbidden - Only learners can submit evidence", 403)
    data = request.get_json(silent=True) or {}
    cleaned, errors = validate_evidence(data)
    ksbs = []
    if "ksb_ids" in cleaned:
        ksbs, ksb_error = _resolve_ksbs(cleaned["ksb_ids"], ctx.user_id)
        if ksb_error:
            errors["ksbIds"] = ksb_error
    if errors:
        return json_error("Validation error", 422, errors=errors)

    item = EvidenceItem(learner_id=ctx.user_id)
    _apply(item, cleaned)
    item.ksbs = ksbs
    db.session.add(item)
    db.session.commit()
    logger.info("Evidence %s created by learner %s (%s)", item.id, ctx.user_id, item.status)
    return jsonify(item.to_dict()), 201


@bp.route("")
@login_required
def list_evidence(ctx):
    """List evidence visible to the current user.

    Query args: ``status``, ``learnerId``, ``limit`` (default 20, max 100)
    and ``offset``.
    """
    query = EvidenceItem.query
    learner_id = request.args.get("learnerId", type=int)
    if learner_id is not None:
        denied = learner_access_error(ctx, learner_id)
        if denied:
            return denied
        query = query.filter_by(learner_id=learner_id)
    elif ctx.role is Role.LEARNER:
        query = query.filter_by(learner_id=ctx.user_id)
    elif not ctx.can(Capability.VIEW_ALL_LEARNERS):
        query = query.filter(EvidenceItem.learner_id.in_(associated_learner_ids(ctx.user_id)))

    status = request.args.get("status", "")
    if status:
        query = query.filter_by(status=status)

    limit = max(1, min(request.args.get("limit", 20, type=int), 100))
    offset = max(0, request.args.get("offset", 0, type=int))
    total = query.count()
    items = (
        query.order_by(EvidenceItem.created_at.desc(), EvidenceItem.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return jsonify({"items": [i.to_dict() for i in items], "total": total, "limit": limit, "offset": offset})


def _load(ctx, evidence_id):
    item = db.session.get(EvidenceItem, evidence_id)
    if item is None:
        return None, json_error("Evidence not found", 404)
    denied = learner_access_error(ctx, item.learner_id)
    if denied:
        return None, denied
    return item, None


@bp.route("/<int:evidence_id>")
@login_required
def detail(evidence_id, ctx):
    item, error = _load(ctx, evidence_id)
    if error:
        return error
    return jsonify(item.to_dict())


@bp.route("/<int:evidence_id>", methods=["PATCH"])
@login_required
def update(evidence_id, ctx):
    item, error = _load(ctx, evidence_id)
    if error:
        return error
    if item.learner_id != ctx.user_id:
        return json_error("Forbidden - You can only edit your own evidence", 403)
    if item.status not in EvidenceItem.EDITABLE_STATUSES:
        return json_error("Evidence can only be edited while in draft or needing revision", 403)

    data = request.get_json(silent=True) or {}
    cleaned, errors = validate_evidence(data, partial=True)
    ksbs = None
    if "ksb_ids" in cleaned:
        ksbs, ksb_error = _resolve_ksbs(cleaned["ksb_ids"], item.learner_id)
        if ksb_error:
            errors["ksbIds"] = ksb_error
    if errors:
        return json_error("Validation error", 422, errors=errors)

    _apply(item, cleaned)
    if ksbs is not None:
        item.ksbs = ksbs
    db.session.commit()
    return jsonify(item.to_dict())


@bp.route("/<int:evidence_id>/submit", methods=["POST"])
@login_required
def submit(evidence_id, ctx):
    item, error = _load(ctx, evidence_id)
    if error:
        return error
    if item.learner_id != ctx.user_id:
        return json_error("Forbidden - You can only submit your own evidence", 403)
    if item.status not in EvidenceItem.EDITABLE_STATUSES:
        return json_error("Only draft or revised evidence can be submitted", 400)
    item.status = "submitted"
    item.submission_date = date.today()
    db.session.commit()
    return jsonify(item.to_dict())


@bp.route("/<int:evidence_id>/review", methods=["POST"])
@capability_required(Capability.REVIEW_EVIDENCE)
def review(evidence_id, ctx):
    """Approve evidence or send it back for revision with feedback.

    Body: ``{"decision": "approved" | "needs_revision", "feedbackMessage": str}``.
    """
    item, error = _load(ctx, evidence_id)
    if error:
        return error
    if item.learner_id == ctx.user_id:
        return json_error("Forbidden - You cannot review your own evidence", 403)
    if item.status not in ("submitted", "in_review"):
        return json_error("Only submitted evidence can be reviewed", 400)

    data = request.get_json(silent=True) or {}
    decision = data.get("decision")
    if decision not in REVIEW_DECISIONS:
        return json_error("Decision must be 'approved' or 'needs_revision'", 400)
    message = (data.get("feedbackMessage") or "").strip()
    if decision == "needs_revision" and not message:
        return json_error("Feedback message is required when requesting a revision", 400)

    item.status = decision
    item.reviewer_id = ctx.user_id
    item.reviewed_at = datetime.utcnow()
    if message:
        db.session.add(FeedbackItem(
            sender_id=ctx.user_id,
            recipient_id=item.learner_id,
            message=message,
            related_item_type="evidence",
            related_item_id=item.id,
        ))
    db.session.commit()
    logger.info("Evidence %s reviewed by %s: %s", item.id, ctx.user_id, decision)
    return jsonify(item.to_dict())
