"""Task routes: staff set work for their learners, learners mark it done."""

import logging

from flask import Blueprint, jsonify, request

from skilltrack.auth import capability_required, json_error, learner_access_error, login_required
from skilltrack.models import Task, User, db
from skilltrack.roles import Capability, Role
from skilltrack.standards import ksb_error_for_learner
from skilltrack.validation import validate_task

logger = logging.getLogger(__name__)

bp = Blueprint("tasks", __name__, url_prefix="/api/tasks")


@bp.route("")
@login_required
def list_tasks(ctx):
    """Tasks assigned to the current user, soonest due first.

    Staff pass ``learnerId`` to list one of their learners' tasks, or
    ``assignedBy=me`` for the tasks they have set.  ``status`` filters.
    """
    query = Task.query
    learner_id = request.args.get("learnerId", type=int)
    if learner_id is not None:
        denied = learner_access_error(ctx, learner_id)
        if denied:
            return denied
        query = query.filter_by(assigned_to_id=learner_id)
    elif request.args.get("assignedBy") == "me":
        query = query.filter_by(assigned_by_id=ctx.user_id)
    else:
        query = query.filter_by(assigned_to_id=ctx.user_id)

    status = request.args.get("status", "")
    if status:
        query = query.filter_by(status=status)
    tasks = query.order_by(Task.due_date, Task.id).all()
    return jsonify([t.to_dict() for t in tasks])


@bp.route("", methods=["POST"])
@capability_required(Capability.ASSIGN_TASKS)
def create(ctx):
    data = request.get_json(silent=True) or {}
    cleaned, errors = validate_task(data)
    learner_id = cleaned.get("assigned_to_id")
    if learner_id is not None:
        learner = db.session.get(User, learner_id)
        if learner is None or learner.role != Role.LEARNER.value:
            return json_error("Learner not found", 404)
        denied = learner_access_error(ctx, learner_id)
        if denied:
            return denied
        ksb_error = ksb_error_for_learner(cleaned.get("ksb_id"), learner_id)
        if ksb_error:
            errors["ksbId"] = ksb_error
    if errors:
        return json_error("Validation error", 422, errors=errors)

    task = Task(assigned_by_id=ctx.user_id, **cleaned)
    db.session.add(task)
    db.session.commit()
    logger.info("Task %s assigned to learner %s by user %s", task.id, learner_id, ctx.user_id)
    return jsonify(task.to_dict()), 201


@bp.route("/<int:task_id>")
@login_required
def detail(task_id, ctx):
    task = db.session.get(Task, task_id)
    if task is None:
        return json_error("Task not found", 404)
    if task.assigned_by_id != ctx.user_id:
        denied = learner_access_error(ctx, task.assigned_to_id)
        if denied:
            return denied
    return jsonify(task.to_dict())


@bp.route("/<int:task_id>", methods=["PATCH"])
@login_required
def update(task_id, ctx):
    """Update a task.

    The assigned learner may only change ``status``.  Other fields belong to
    the staff member who set the task; admins may edit any task.
    """
    task = db.session.get(Task, task_id)
    if task is None:
        return json_error("Task not found", 404)
    data = request.get_json(silent=True) or {}

    if ctx.role is Role.LEARNER:
        if task.assigned_to_id != ctx.user_id:
            return json_error("Forbidden - You can only update your own tasks", 403)
        if "status" not in data:
            return json_error("Status is required", 400)
        cleaned, errors = validate_task({"status": data["status"]}, partial=True)
    else:
        if task.assigned_by_id != ctx.user_id and ctx.role is not Role.ADMIN:
            return json_error("Forbidden - You can only update tasks you created", 403)
        cleaned, errors = validate_task(data, partial=True)
        if "ksb_id" in cleaned:
            ksb_error = ksb_error_for_learner(cleaned["ksb_id"], task.assigned_to_id)
            if ksb_error:
                errors["ksbId"] = ksb_error
    if errors:
        return json_error("Validation error", 422, errors=errors)

    for field, value in cleaned.items():
        setattr(task, field, value)
    db.session.commit()
    logger.info("Task %s updated by user %s (%s)", task.id, ctx.user_id, ", ".join(sorted(cleaned)) or "no changes")
    return jsonify(task.to_dict())


@bp.route("/<int:task_id>", methods=["DELETE"])
@login_required
def delete(task_id, ctx):
    task = db.session.get(Task, task_id)
    if task is None:
        return json_error("Task not found", 404)
    if task.assigned_by_id != ctx.user_id and ctx.role is not Role.ADMIN:
        return json_error("Forbidden - You can only delete tasks you created", 403)
    db.session.delete(task)
    db.session.commit()
    return "", 204
