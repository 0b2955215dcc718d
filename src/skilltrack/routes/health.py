"""Health-check endpoint for load balancers and uptime monitors."""

import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from skilltrack.models import db

logger = logging.getLogger(__name__)

bp = Blueprint("health", __name__)


@bp.route("/healthz")
def healthz():
    """Return application health including DB connectivity.

    Returns HTTP 200 with ``{"status": "ok"}`` when the database is reachable,
    or HTTP 503 with ``{"status": "degraded"}`` when it is not.
    """
    try:
        db.session.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as exc:
        logger.warning("Health check could not reach the database: %s", exc)
        db.session.rollback()
        db_status = "error"

    status = "ok" if db_status == "connected" else "degraded"
    code = 200 if status == "ok" else 503
    return jsonify({"status": status, "db": db_status, "version": "0.1.0"}), code
