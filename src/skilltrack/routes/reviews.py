"""Progress review routes: scheduling, rescheduling and three-way sign-off."""

import logging
from datetime import date, datetime, timedelta

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from skilltrack.auth import capability_required, json_error, learner_access_error, login_required
from skilltrack.models import ProgressReview, User, db
from skilltrack.roles import Capability, Role
from skilltrack.standards import associated_learner_ids, profile_for
from skilltrack.validation import as_id, parse_date, validate_review

logger = logging.getLogger(__name__)

bp = Blueprint("reviews", __name__, url_prefix="/api/reviews")

DEFAULT_UPCOMING_DAYS = 30

# Roles that may sign or reschedule on another party's behalf
_OVERSIGHT_ROLES = (Role.ADMIN, Role.IQA)


def _load(ctx, review_id):
    review = db.session.get(ProgressReview, review_id)
    if review is None:
        return None, json_error("Review not found", 404)
    if ctx.user_id not in (review.tutor_id, review.employer_id):
        denied = learner_access_error(ctx, review.learner_id)
        if denied:
            return None, denied
    return review, None


def _can_manage(ctx, review) -> bool:
    return ctx.user_id == review.tutor_id or ctx.role in _OVERSIGHT_ROLES


def _visible(query, ctx):
    """Restrict *query* to the reviews *ctx* takes part in or oversees."""
    if ctx.can(Capability.VIEW_ALL_LEARNERS):
        return query
    if ctx.role is Role.LEARNER:
        return query.filter(ProgressReview.learner_id == ctx.user_id)
    return query.filter(or_(
        ProgressReview.tutor_id == ctx.user_id,
        ProgressReview.employer_id == ctx.user_id,
        ProgressReview.learner_id.in_(associated_learner_ids(ctx.user_id)),
    ))


@bp.route("/<int:review_id>")
@login_required
def detail(review_id, ctx):
    review, error = _load(ctx, review_id)
    if error:
        return error
    return jsonify(review.to_dict())


@bp.route("/learner/<int:learner_id>")
@login_required
def list_for_learner(learner_id, ctx):
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    reviews = (
        ProgressReview.query.filter_by(learner_id=learner_id)
        .order_by(ProgressReview.scheduled_date.desc(), ProgressReview.id.desc())
        .all()
    )
    return jsonify([r.to_dict() for r in reviews])


@bp.route("/tutor/<int:tutor_id>")
@login_required
def list_for_tutor(tutor_id, ctx):
    if tutor_id != ctx.user_id and not ctx.can(Capability.VIEW_ALL_LEARNERS) and ctx.role is not Role.IQA:
        return json_error("Forbidden - You can only list your own reviews", 403)
    reviews = (
        ProgressReview.query.filter_by(tutor_id=tutor_id)
        .order_by(ProgressReview.scheduled_date, ProgressReview.id)
        .all()
    )
    return jsonify([r.to_dict() for r in reviews])


@bp.route("/upcoming", defaults={"days": DEFAULT_UPCOMING_DAYS})
@bp.route("/upcoming/<int:days>")
@login_required
def upcoming(days, ctx):
    """Scheduled reviews due within the next *days* days, soonest first."""
    today = date.today()
    query = ProgressReview.query.filter(
        ProgressReview.status.in_(ProgressReview.UPCOMING_STATUSES),
        ProgressReview.scheduled_date >= today,
        ProgressReview.scheduled_date <= today + timedelta(days=min(days, 366)),
    )
    reviews = _visible(query, ctx).order_by(ProgressReview.scheduled_date, ProgressReview.id).all()
    return jsonify([r.to_dict() for r in reviews])


@bp.route("", methods=["POST"])
@capability_required(Capability.SCHEDULE_REVIEWS)
def create(ctx):
    """Schedule a review.

    ``tutorId`` defaults to the learner's tutor, or to the current user when
    the learner has none.
    """
    data = request.get_json(silent=True) or {}
    cleaned, errors = validate_review(data)
    if errors:
        return json_error("Validation error", 422, errors=errors)

    learner = db.session.get(User, cleaned["learner_id"])
    if learner is None or learner.role != Role.LEARNER.value:
        return json_error("Learner not found", 404)
    denied = learner_access_error(ctx, learner.id)
    if denied:
        return denied

    if "tutor_id" not in cleaned:
        profile = profile_for(learner.id)
        cleaned["tutor_id"] = profile.tutor_id if profile and profile.tutor_id else ctx.user_id
    for key, field in (("tutorId", "tutor_id"), ("employerId", "employer_id")):
        user_id = cleaned.get(field)
        if user_id is not None and db.session.get(User, user_id) is None:
            errors[key] = "Unknown user"
    if errors:
        return json_error("Validation error", 422, errors=errors)

    review = ProgressReview(**cleaned)
    db.session.add(review)
    db.session.commit()
    logger.info(
        "Progress review %s scheduled for learner %s on %s by user %s",
        review.id, review.learner_id, review.scheduled_date.isoformat(), ctx.user_id,
    )
    return jsonify(review.to_dict()), 201


@bp.route("/<int:review_id>", methods=["PATCH"])
@login_required
def update(review_id, ctx):
    review, error = _load(ctx, review_id)
    if error:
        return error
    if not _can_manage(ctx, review):
        return json_error("Forbidden - Only the review's tutor can update it", 403)
    data = request.get_json(silent=True) or {}
    cleaned, errors = validate_review(data, partial=True)
    if errors:
        return json_error("Validation error", 422, errors=errors)
    for field, value in cleaned.items():
        setattr(review, field, value)
    db.session.commit()
    return jsonify(review.to_dict())


@bp.route("/<int:review_id>/sign", methods=["POST"])
@login_required
def sign(review_id, ctx):
    """Record a signature for ``role`` (learner, employer or tutor).

    Each party signs for themselves; admins and IQAs may sign on a party's
    behalf by passing ``userId``.  Once every required party has signed the
    review is completed.
    """
    review = db.session.get(ProgressReview, review_id)
    if review is None:
        return json_error("Review not found", 404)
    data = request.get_json(silent=True) or {}
    party = data.get("role")
    if not isinstance(party, str) or party not in ProgressReview.SIGNATORIES:
        return json_error("Invalid role. Must be 'learner', 'employer', or 'tutor'", 400)

    signer_id = as_id(data.get("userId", ctx.user_id))
    if signer_id is None:
        return json_error("Validation error", 422, errors={"userId": "Must be a user id"})
    oversight = ctx.role in _OVERSIGHT_ROLES
    if signer_id != ctx.user_id and not oversight:
        return json_error("Forbidden - You can only sign as yourself", 403)
    expected = getattr(review, ProgressReview.SIGNATORIES[party])
    if expected is None:
        return json_error(f"This review has no {party} to sign", 400)
    if signer_id != expected and not oversight:
        return json_error(f"Forbidden - You are not the {party} on this review", 403)
    if review.status == "cancelled":
        return json_error("A cancelled review cannot be signed", 400)

    setattr(review, f"{party}_signed_at", datetime.utcnow())
    if review.is_fully_signed():
        review.status = "completed"
        review.actual_date = review.actual_date or date.today()
    db.session.commit()
    logger.info("Progress review %s signed as %s by user %s", review.id, party, ctx.user_id)
    return jsonify(review.to_dict())


@bp.route("/<int:review_id>/reschedule", methods=["POST"])
@login_required
def reschedule(review_id, ctx):
    review = db.session.get(ProgressReview, review_id)
    if review is None:
        return json_error("Review not found", 404)
    if not _can_manage(ctx, review):
        return json_error("Forbidden - Only the review's tutor can reschedule it", 403)
    if review.status in ("completed", "cancelled"):
        return json_error(f"A {review.status} review cannot be rescheduled", 400)
    data = request.get_json(silent=True) or {}
    new_date = parse_date(data.get("newDate"))
    if new_date is None:
        return json_error("Invalid date format. Please use YYYY-MM-DD", 400)

    review.scheduled_date = new_date
    review.status = "rescheduled"
    notes = data.get("reschedulingNotes")
    if isinstance(notes, str) and notes.strip():
        review.rescheduling_notes = notes.strip()
    db.session.commit()
    logger.info("Progress review %s rescheduled to %s by user %s", review.id, new_date.isoformat(), ctx.user_id)
    return jsonify(review.to_dict())
