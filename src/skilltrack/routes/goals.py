"""Learning goal routes."""

from flask import Blueprint, jsonify, request

from skilltrack.auth import json_error, learner_access_error, login_required
from skilltrack.models import LearningGoal, User, db
from skilltrack.roles import Role
from skilltrack.validation import as_id, validate_goal

bp = Blueprint("goals", __name__, url_prefix="/api/learning-goals")


def _load(ctx, goal_id):
    goal = db.session.get(LearningGoal, goal_id)
    if goal is None:
        return None, json_error("Learning goal not found", 404)
    denied = learner_access_error(ctx, goal.learner_id)
    if denied:
        return None, denied
    return goal, None


@bp.route("")
@login_required
def list_goals(ctx):
    learner_id = request.args.get("learnerId", ctx.user_id, type=int)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    query = LearningGoal.query.filter_by(learner_id=learner_id)
    status = request.args.get("status", "")
    if status:
        query = query.filter_by(status=status)
    goals = query.order_by(LearningGoal.target_date.is_(None), LearningGoal.target_date, LearningGoal.id).all()
    return jsonify([g.to_dict() for g in goals])


@bp.route("/<int:goal_id>")
@login_required
def detail(goal_id, ctx):
    goal, error = _load(ctx, goal_id)
    if error:
        return error
    return jsonify(goal.to_dict())


@bp.route("", methods=["POST"])
@login_required
def create(ctx):
    """Learners set goals for themselves; their staff may set one via ``learnerId``."""
    data = request.get_json(silent=True) or {}
    learner_id = as_id(data.get("learnerId", ctx.user_id))
    if learner_id is None:
        return json_error("Validation error", 422, errors={"learnerId": "Must be a user id"})
    learner = db.session.get(User, learner_id)
    if learner is None or learner.role != Role.LEARNER.value:
        return json_error("Learner not found", 404)
    denied = learner_access_error(ctx, learner_id)
    if denied:
        return denied
    cleaned, errors = validate_goal(data)
    if errors:
        return json_error("Validation error", 422, errors=errors)
    goal = LearningGoal(learner_id=learner_id, **cleaned)
    db.session.add(goal)
    db.session.commit()
    return jsonify(goal.to_dict()), 201


@bp.route("/<int:goal_id>", methods=["PATCH"])
@login_required
def update(goal_id, ctx):
    goal, error = _load(ctx, goal_id)
    if error:
        return error
    cleaned, errors = validate_goal(request.get_json(silent=True) or {}, partial=True)
    if errors:
        return json_error("Validation error", 422, errors=errors)
    for field, value in cleaned.items():
        setattr(goal, field, value)
    db.session.commit()
    return jsonify(goal.to_dict())


@bp.route("/<int:goal_id>", methods=["DELETE"])
@login_required
def delete(goal_id, ctx):
    goal, error = _load(ctx, goal_id)
    if error:
        return error
    if goal.learner_id != ctx.user_id:
        return json_error("Forbidden - Only the learner can delete their goals", 403)
    db.session.delete(goal)
    db.session.commit()
    return "", 204
