"""Tests for production configuration checks and the development-login guard."""

import pytest

from skilltrack.app import _dev_login_allowed, _validate_production_env, create_app

_GOOD = {
    "SECRET_KEY": "a-long-random-value",
    "GOOGLE_CLIENT_ID": "client-id",
    "GOOGLE_CLIENT_SECRET": "client-secret",
    "DEV_LOGIN_ENABLED": False,
}


# ---------------------------------------------------------------------------
# _validate_production_env
# ---------------------------------------------------------------------------


def test_valid_production_config_passes():
    _validate_production_env(dict(_GOOD))


def test_default_secret_key_is_rejected():
    config = dict(_GOOD, SECRET_KEY="dev-key-change-in-production")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        _validate_production_env(config)


def test_missing_login_method_is_rejected():
    config = dict(_GOOD, GOOGLE_CLIENT_SECRET=None)
    with pytest.raises(RuntimeError, match="No login method"):
        _validate_production_env(config)


def test_all_problems_are_reported_together():
    """Every misconfiguration appears in one error so it can be fixed in one pass."""
    config = {"SECRET_KEY": "", "DEV_LOGIN_ENABLED": True}
    with pytest.raises(RuntimeError) as excinfo:
        _validate_production_env(config)
    message = str(excinfo.value)
    assert "SECRET_KEY" in message
    assert "No login method" in message
    assert "DEV_LOGIN_ENABLED" in message


# ---------------------------------------------------------------------------
# Development login guard
# ---------------------------------------------------------------------------


def test_dev_login_allowed_only_outside_production():
    assert _dev_login_allowed({"DEV_LOGIN_ENABLED": True, "APP_ENV": "development"})
    assert not _dev_login_allowed({"DEV_LOGIN_ENABLED": True, "APP_ENV": "production"})
    assert not _dev_login_allowed({"DEV_LOGIN_ENABLED": False, "APP_ENV": "development"})


def test_production_app_refuses_to_start_with_dev_login():
    with pytest.raises(RuntimeError, match="DEV_LOGIN_ENABLED"):
        create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
                "APP_ENV": "production",
                "DEV_LOGIN_ENABLED": True,
                **{k: v for k, v in _GOOD.items() if k != "DEV_LOGIN_ENABLED"},
            }
        )


def test_production_app_has_no_dev_login_route():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "APP_ENV": "production",
            **_GOOD,
        }
    )
    resp = app.test_client().post("/dev-login", json={"role": "admin"})
    assert resp.status_code == 404
    assert "dev_login" not in app.blueprints


def test_dev_login_disabled_by_default():
    """The shared fixture enables it; a plain development app does not."""
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:", "DEV_LOGIN_ENABLED": False})
    resp = app.test_client().post("/dev-login", json={"role": "admin"})
    assert resp.status_code == 404
