"""Flask application factory."""

import logging
import os
from pathlib import Path

from flask import Flask, g, session
from flask_wtf.csrf import CSRFError, CSRFProtect
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from skilltrack.auth import context_for, json_error
from skilltrack.ilr import DEFAULT_UKPRN
from skilltrack.models import User, db
from skilltrack.standards import seed_standards

logger = logging.getLogger(__name__)

csrf = CSRFProtect()

_INSECURE_SECRET_KEY = "dev-key-change-in-production"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").strip().lower() in ("1", "true", "yes")


def create_app(test_config=None):
    app = Flask(__name__)

    # Database: prefer DATABASE_URL (PostgreSQL), fall back to SQLite
    db_url = os.environ.get("DATABASE_URL")
    if db_url:
        # Some hosts still issue postgres:// which SQLAlchemy rejects
        if db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql://", 1)
    else:
        db_path = os.environ.get(
            "SKILLTRACK_DB_PATH",
            str(Path(__file__).resolve().parent.parent.parent / "data" / "skilltrack.db"),
        )
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        db_url = f"sqlite:///{db_path}"

    app.config["SQLALCHEMY_DATABASE_URI"] = db_url
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", _INSECURE_SECRET_KEY)
    app.config["APP_ENV"] = os.environ.get("APP_ENV", "development")
    app.config["GOOGLE_CLIENT_ID"] = os.environ.get("GOOGLE_CLIENT_ID")
    app.config["GOOGLE_CLIENT_SECRET"] = os.environ.get("GOOGLE_CLIENT_SECRET")
    app.config["DEV_LOGIN_ENABLED"] = _env_flag("DEV_LOGIN_ENABLED")
    app.config["OTJ_LOOKBACK_WEEKS"] = int(os.environ.get("OTJ_LOOKBACK_WEEKS", "8"))
    app.config["FOCUS_AREA_LIMIT"] = int(os.environ.get("FOCUS_AREA_LIMIT", "5"))
    app.config["OTJ_TARGET_HOURS"] = float(os.environ.get("OTJ_TARGET_HOURS", "1000"))
    app.config["ILR_UKPRN"] = os.environ.get("ILR_UKPRN", DEFAULT_UKPRN)
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024  # 10 MB upload limit

    if test_config:
        app.config.update(test_config)

    # Keep model field order in JSON responses
    app.json.sort_keys = False

    _configure_logging(app)
    if app.config["APP_ENV"] == "production":
        _validate_production_env(app.config)

    # Trust the hosting proxy so url_for(..., _external=True) produces https://
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

    db.init_app(app)
    csrf.init_app(app)

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            if not _is_duplicate_ddl_error(exc):
                raise
            logger.debug("create_all: some tables already exist (concurrent worker startup), continuing: %s", exc)
        seeded = _seed_reference_data()

        # Startup diagnostics
        oauth_ok = bool(app.config.get("GOOGLE_CLIENT_ID") and app.config.get("GOOGLE_CLIENT_SECRET"))
        logger.info(
            "Startup: env=%s db=%s oauth=%s dev_login=%s seeded_rows=%d",
            app.config["APP_ENV"], db.engine.dialect.name, oauth_ok,
            _dev_login_allowed(app.config), seeded,
        )

    # Register blueprints
    from skilltrack.routes.auth import bp as auth_bp, init_oauth
    from skilltrack.routes.dashboard import bp as dashboard_bp
    from skilltrack.routes.evidence import bp as evidence_bp
    from skilltrack.routes.feedback import bp as feedback_bp
    from skilltrack.routes.goals import bp as goals_bp
    from skilltrack.routes.health import bp as health_bp
    from skilltrack.routes.ilr import bp as ilr_bp
    from skilltrack.routes.ksbs import bp as ksbs_bp
    from skilltrack.routes.otj_logs import bp as otj_logs_bp
    from skilltrack.routes.profiles import bp as profiles_bp
    from skilltrack.routes.reports import bp as reports_bp
    from skilltrack.routes.reviews import bp as reviews_bp
    from skilltrack.routes.tasks import bp as tasks_bp
    from skilltrack.routes.timesheets import bp as timesheets_bp

    init_oauth(app)
    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(evidence_bp)
    app.register_blueprint(feedback_bp)
    app.register_blueprint(goals_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(ilr_bp)
    app.register_blueprint(ksbs_bp)
    app.register_blueprint(otj_logs_bp)
    app.register_blueprint(profiles_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(reviews_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(timesheets_bp)

    # The development login issues sessions without credentials; it only
    # exists when explicitly enabled outside production.
    if _dev_login_allowed(app.config):
        from skilltrack.routes.dev_login import bp as dev_login_bp

        csrf.exempt(dev_login_bp)
        app.register_blueprint(dev_login_bp)
        logger.warning("Development login endpoint is enabled: POST /dev-login")

    _register_error_handlers(app)

    @app.before_request
    def load_user():
        user_id = session.get("user_id")
        g.user = db.session.get(User, user_id) if user_id else None
        if g.user is not None and g.user.status in ("suspended", "deactivated"):
            g.user = None
        g.ctx = context_for(g.user)

    return app


def _configure_logging(app):
    level_name = os.environ.get("LOG_LEVEL", "DEBUG" if app.debug else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("skilltrack").setLevel(level)


def _dev_login_allowed(config) -> bool:
    return bool(config.get("DEV_LOGIN_ENABLED")) and config.get("APP_ENV") != "production"


def _validate_production_env(config):
    """Refuse to start a production app with an unsafe configuration.

    Every problem is collected and reported in a single RuntimeError so an
    operator can fix the environment in one pass.
    """
    problems = []
    secret = config.get("SECRET_KEY")
    if not secret or secret == _INSECURE_SECRET_KEY:
        problems.append("SECRET_KEY must be set to a random value in production")
    if not (config.get("GOOGLE_CLIENT_ID") and config.get("GOOGLE_CLIENT_SECRET")):
        problems.append(
            "No login method configured: set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET"
        )
    if config.get("DEV_LOGIN_ENABLED"):
        problems.append("DEV_LOGIN_ENABLED must not be set in production")
    if problems:
        raise RuntimeError("Invalid production configuration:\n  - " + "\n  - ".join(problems))


def _register_error_handlers(app):
    @app.errorhandler(CSRFError)
    def handle_csrf_error(exc):
        return json_error(exc.description or "CSRF token missing or invalid", 400)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return json_error(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        logger.exception("Unhandled error while serving request: %s", exc)
        db.session.rollback()
        return json_error("An unexpected error occurred", 500)


def _is_duplicate_ddl_error(exc: Exception) -> bool:
    """Return True if *exc* indicates a DDL object (table/column) already exists.

    Covers both SQLite ('already exists') and PostgreSQL ('already exists',
    'duplicate column', 'duplicate table') error messages.
    """
    msg = str(exc).lower()
    return any(kw in msg for kw in ("already exists", "duplicate column", "duplicate table"))


def _is_unique_constraint_error(exc: Exception) -> bool:
    """Return True if *exc* is a unique-constraint violation.

    Detection strategy (most-to-least reliable):
    1. SQLAlchemy IntegrityError + SQLSTATE/PGCODE '23505' via the driver's
       ``orig`` attribute.
    2. Message-based fallback covering SQLite ('unique constraint failed') and
       any driver that doesn't expose a structured error code.
    """
    if not isinstance(exc, IntegrityError):
        return False
    orig = getattr(exc, "orig", None)
    if orig is not None:
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if code is not None:
            return code == "23505"
    msg = str(exc).lower()
    return any(kw in msg for kw in ("unique constraint failed", "unique violation", "duplicate key value"))


def _seed_reference_data() -> int:
    """Seed standards and KSBs, tolerating a concurrent worker doing the same.

    A UNIQUE violation on commit means another worker already inserted the
    rows, which is treated as a no-op rather than a fatal startup failure.
    """
    added = 0
    try:
        added = seed_standards()
        if added:
            db.session.commit()
    except Exception as exc:
        db.session.rollback()
        if _is_unique_constraint_error(exc):
            logger.debug("Reference data seed skipped (concurrent worker already seeded): %s", exc)
            return 0
        raise
    return added
