"""Shared pytest fixtures for the SkillTrack test suite."""

from pathlib import Path

import pytest

from skilltrack.app import create_app
from skilltrack.models import ApprenticeshipStandard, LearnerProfile, db

DATA_DIR = Path(__file__).parent / "data"


@pytest.fixture()
def app():
    """Create an application configured for testing with an in-memory SQLite DB."""
    application = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SECRET_KEY": "test-secret-key",
            "WTF_CSRF_ENABLED": False,
            "DEV_LOGIN_ENABLED": True,
            "APP_ENV": "test",
        }
    )
    yield application


@pytest.fixture()
def client(app):
    """A test client for the application."""
    return app.test_client()


@pytest.fixture()
def login(client):
    """Return a function that switches the test client to a development user.

    Asserts the login succeeds so fixture problems surface here rather than
    as unrelated 401s later.
    """

    def _login(role="learner", email=None):
        body = {"role": role}
        if email:
            body["email"] = email
        resp = client.post("/dev-login", json=body)
        assert resp.status_code == 200, f"dev login as {role} failed: HTTP {resp.status_code}"
        return resp.get_json()["user"]

    return _login


@pytest.fixture()
def standard_id(app):
    """Primary key of the seeded ST0122 standard."""
    with app.app_context():
        return ApprenticeshipStandard.query.filter_by(code="ST0122").one().id


@pytest.fixture()
def make_profile(app):
    """Return a function that stores a learner profile directly in the database."""

    def _make(user_id, **fields):
        with app.app_context():
            profile = LearnerProfile(user_id=user_id, **fields)
            db.session.add(profile)
            db.session.commit()
            return profile.id

    return _make


@pytest.fixture()
def cohort(login, make_profile, standard_id):
    """A learner on ST0122 with an assessor, IQA and training provider assigned.

    Also creates an admin and an unrelated assessor.  Leaves the client
    logged in as the learner.
    """
    ids = {
        "assessor": login("assessor")["id"],
        "iqa": login("iqa")["id"],
        "training_provider": login("training_provider")["id"],
        "admin": login("admin")["id"],
        "other_assessor": login("assessor", email="other.assessor@dev.local")["id"],
        "standard": standard_id,
    }
    ids["learner"] = login("learner")["id"]
    make_profile(
        ids["learner"],
        standard_id=standard_id,
        tutor_id=ids["assessor"],
        iqa_id=ids["iqa"],
        training_provider_id=ids["training_provider"],
        uln="1234567890",
    )
    return ids


@pytest.fixture()
def ilr_xml():
    """An ILR return with one valid learner and two invalid ones."""
    return (DATA_DIR / "ilr_return.xml").read_bytes()


@pytest.fixture()
def clean_ilr_xml():
    """An ILR return whose only learner passes validation with no warnings."""
    return (DATA_DIR / "ilr_return_clean.xml").read_bytes()
