"""Development-only login: issues a session for a role without credentials.

Registered by the app factory only when DEV_LOGIN_ENABLED is set and
APP_ENV is not production.
"""

import logging

from flask import Blueprint, jsonify, request, session

from skilltrack.auth import json_error
from skilltrack.models import User, db
from skilltrack.roles import Role

logger = logging.getLogger(__name__)

bp = Blueprint("dev_login", __name__)


@bp.route("/dev-login", methods=["POST"])
def dev_login():
    """Log in as the development user for ``role`` (created on first use).

    Body: ``{"role": "learner"}``; an optional ``email`` selects a specific
    development user so tests can hold several users of the same role.
    """
    data = request.get_json(silent=True) or {}
    role = Role.parse(data.get("role", Role.LEARNER.value))
    if role is None:
        return json_error(f"Unknown role '{data.get('role')}'", 400)

    email = (data.get("email") or f"{role.value}@dev.local").strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user:
        user = User(
            email=email,
            first_name="Development",
            last_name="User",
            role=role.value,
            status="active",
        )
        db.session.add(user)
        db.session.commit()
    elif user.role != role.value:
        return json_error(f"{email} already exists with role '{user.role}'", 409)

    session.clear()
    session["user_id"] = user.id
    logger.info("Development login as %s (%s)", email, role.value)
    return jsonify({"message": "Development login successful", "user": user.to_dict()})
