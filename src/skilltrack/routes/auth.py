"""Google OAuth login and current-user endpoints."""

import logging
import os

from authlib.integrations.base_client.errors import OAuthError
from authlib.integrations.flask_client import OAuth
from flask import Blueprint, current_app, g, jsonify, redirect, session, url_for
from flask_wtf.csrf import generate_csrf

from skilltrack.auth import json_error, login_required
from skilltrack.models import User, db

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)
oauth = OAuth()


def init_oauth(app):
    oauth.init_app(app)
    oauth.register(
        name="google",
        client_id=app.config.get("GOOGLE_CLIENT_ID"),
        client_secret=app.config.get("GOOGLE_CLIENT_SECRET"),
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )


def _allowed_emails():
    raw = os.environ.get("ALLOWED_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


@bp.route("/auth/google")
def google_login():
    if not (current_app.config.get("GOOGLE_CLIENT_ID") and current_app.config.get("GOOGLE_CLIENT_SECRET")):
        return json_error(
            "Google OAuth is not configured. Set GOOGLE_CLIENT_ID and "
            "GOOGLE_CLIENT_SECRET environment variables.",
            503,
        )
    redirect_uri = url_for("auth.callback", _external=True)
    return oauth.google.authorize_redirect(redirect_uri)


@bp.route("/auth/callback")
def callback():
    try:
        token = oauth.google.authorize_access_token()
    except OAuthError as e:
        logger.warning("Google sign-in failed: %s", e.description or e)
        return json_error(f"Google sign-in failed: {e.description or str(e)}", 401)
    userinfo = token.get("userinfo") or {}
    if not userinfo.get("email"):
        return json_error("Google sign-in did not return an email address", 401)

    email = userinfo["email"].lower()
    allowed = _allowed_emails()
    if allowed and email not in allowed:
        logger.info("Sign-in refused for %s (not in ALLOWED_EMAILS)", email)
        return json_error("Access denied", 403)

    user = User.query.filter_by(email=email).first()
    if not user:
        user = User(
            email=email,
            first_name=userinfo.get("given_name"),
            last_name=userinfo.get("family_name"),
            google_sub=userinfo.get("sub"),
        )
        db.session.add(user)
        db.session.commit()
    elif user.google_sub is None:
        user.google_sub = userinfo.get("sub")
        db.session.commit()

    session.clear()
    session["user_id"] = user.id
    return redirect("/")


@bp.route("/api/auth/me")
@login_required
def me(ctx):
    return jsonify(g.user.to_dict())


@bp.route("/api/auth/csrf")
def csrf_token():
    """Hand a CSRF token to JSON clients; send it back as ``X-CSRFToken``."""
    return jsonify({"csrfToken": generate_csrf()})


@bp.route("/api/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"message": "Logged out"})
