"""Feedback routes: staff messages to learners and the learner's inbox."""

import logging

from flask import Blueprint, jsonify, request

from skilltrack.auth import capability_required, json_error, learner_access_error, login_required
from skilltrack.models import FeedbackItem, User, db
from skilltrack.roles import Capability, Role
from skilltrack.validation import as_id

logger = logging.getLogger(__name__)

bp = Blueprint("feedback", __name__, url_prefix="/api/feedback")

RELATED_ITEM_TYPES = ("otj_log", "evidence", "task", "review")


@bp.route("")
@login_required
def inbox(ctx):
    """Feedback received by the current user, newest first; ``unread=true`` filters."""
    query = FeedbackItem.query.filter_by(recipient_id=ctx.user_id)
    if request.args.get("unread") == "true":
        query = query.filter_by(read=False)
    items = query.order_by(FeedbackItem.created_at.desc(), FeedbackItem.id.desc()).all()
    return jsonify([f.to_dict() for f in items])


@bp.route("", methods=["POST"])
@capability_required(Capability.REVIEW_EVIDENCE)
def send(ctx):
    data = request.get_json(silent=True) or {}
    errors = {}
    recipient_id = as_id(data.get("recipientId"))
    if recipient_id is None:
        errors["recipientId"] = "Must be a user id"
    message = data.get("message")
    message = message.strip() if isinstance(message, str) else ""
    if not message:
        errors["message"] = "Message is required"
    related_type = data.get("relatedItemType")
    related_id = data.get("relatedItemId")
    if related_type is not None and related_type not in RELATED_ITEM_TYPES:
        errors["relatedItemType"] = "Must be one of: " + ", ".join(RELATED_ITEM_TYPES)
    if related_id is not None and as_id(related_id) is None:
        errors["relatedItemId"] = "Must be a number"
    if errors:
        return json_error("Validation error", 422, errors=errors)

    recipient = db.session.get(User, recipient_id)
    if recipient is None or recipient.role != Role.LEARNER.value:
        return json_error("Learner not found", 404)
    denied = learner_access_error(ctx, recipient_id)
    if denied:
        return denied

    item = FeedbackItem(
        sender_id=ctx.user_id,
        recipient_id=recipient_id,
        message=message,
        related_item_type=related_type,
        related_item_id=related_id,
    )
    db.session.add(item)
    db.session.commit()
    logger.info("Feedback %s sent to learner %s by user %s", item.id, recipient_id, ctx.user_id)
    return jsonify(item.to_dict()), 201


@bp.route("/<int:feedback_id>/read", methods=["POST"])
@login_required
def mark_read(feedback_id, ctx):
    item = db.session.get(FeedbackItem, feedback_id)
    if item is None or item.recipient_id != ctx.user_id:
        return json_error("Feedback not found", 404)
    item.read = True
    db.session.commit()
    return jsonify(item.to_dict())
