"""API tests for progress reviews: scheduling, sign-off and rescheduling."""

from datetime import date, timedelta

import pytest


def _in_days(days):
    return (date.today() + timedelta(days=days)).isoformat()


def _schedule(client, learner_id, days=10, **overrides):
    body = {"learnerId": learner_id, "title": "Twelve-week progress review", "scheduledDate": _in_days(days)}
    body.update(overrides)
    resp = client.post("/api/reviews", json=body)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


@pytest.fixture()
def review(client, login, cohort):
    """A review scheduled by the cohort tutor; the client is left logged in as the learner."""
    login("assessor")
    created = _schedule(client, cohort["learner"], location="Head office")
    login("learner")
    return created


def test_tutor_schedules_review(client, cohort, review):
    assert review["tutorId"] == cohort["assessor"]
    assert review["status"] == "scheduled"
    assert review["signedByLearner"] is False
    assert client.get(f"/api/reviews/{review['id']}").get_json()["location"] == "Head office"
    listed = client.get(f"/api/reviews/learner/{cohort['learner']}").get_json()
    assert [r["id"] for r in listed] == [review["id"]]


def test_learner_cannot_schedule(client, cohort):
    assert client.post("/api/reviews", json={"learnerId": cohort["learner"], "title": "Review",
                                             "scheduledDate": _in_days(3)}).status_code == 403


def test_schedule_validation(client, login, cohort):
    login("admin")
    resp = client.post("/api/reviews", json={"learnerId": cohort["learner"], "title": ""})
    assert resp.status_code == 422
    assert set(resp.get_json()["errors"]) == {"title", "scheduledDate"}

    resp = client.post("/api/reviews", json={"learnerId": cohort["learner"], "title": "Review",
                                             "scheduledDate": _in_days(3), "employerId": 99999})
    assert resp.status_code == 422
    assert resp.get_json()["errors"] == {"employerId": "Unknown user"}


def test_unassociated_staff_cannot_schedule_or_read(client, login, review, cohort):
    login("assessor", email="other.assessor@dev.local")
    assert client.post("/api/reviews", json={"learnerId": cohort["learner"], "title": "Review",
                                             "scheduledDate": _in_days(3)}).status_code == 403
    assert client.get(f"/api/reviews/{review['id']}").status_code == 403


def test_upcoming_window(client, login, cohort):
    login("assessor")
    soon = _schedule(client, cohort["learner"], days=5)
    later = _schedule(client, cohort["learner"], days=40)
    _schedule(client, cohort["learner"], days=-1)

    login("learner")
    assert [r["id"] for r in client.get("/api/reviews/upcoming").get_json()] == [soon["id"]]
    assert [r["id"] for r in client.get("/api/reviews/upcoming/60").get_json()] == [soon["id"], later["id"]]

    login("learner", email="second.learner@dev.local")
    assert client.get("/api/reviews/upcoming/60").get_json() == []


def test_tutor_lists_own_reviews_only(client, login, cohort, review):
    login("assessor")
    assert [r["id"] for r in client.get(f"/api/reviews/tutor/{cohort['assessor']}").get_json()] == [review["id"]]
    login("assessor", email="other.assessor@dev.local")
    assert client.get(f"/api/reviews/tutor/{cohort['assessor']}").status_code == 403


# ---------------------------------------------------------------------------
# Update and reschedule
# ---------------------------------------------------------------------------


def test_only_tutor_updates_review(client, login, review):
    assert client.patch(f"/api/reviews/{review['id']}", json={"notes": "Mine"}).status_code == 403
    login("assessor")
    resp = client.patch(f"/api/reviews/{review['id']}", json={"notes": "Agreed next steps", "location": "Teams"})
    assert resp.status_code == 200
    assert resp.get_json()["notes"] == "Agreed next steps"
    assert client.patch(f"/api/reviews/{review['id']}", json={"status": "rescheduled"}).status_code == 422


def test_reschedule(client, login, review):
    assert client.post(f"/api/reviews/{review['id']}/reschedule", json={"newDate": _in_days(20)}).status_code == 403
    login("iqa")
    assert client.post(f"/api/reviews/{review['id']}/reschedule", json={"newDate": "next week"}).status_code == 400

    resp = client.post(
        f"/api/reviews/{review['id']}/reschedule",
        json={"newDate": _in_days(20), "reschedulingNotes": "Learner on annual leave"},
    )
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "rescheduled"
    assert data["scheduledDate"] == _in_days(20)
    assert data["reschedulingNotes"] == "Learner on annual leave"


# ---------------------------------------------------------------------------
# Sign-off
# ---------------------------------------------------------------------------


def test_learner_and_tutor_signatures_complete_review(client, login, review):
    resp = client.post(f"/api/reviews/{review['id']}/sign", json={"role": "learner"})
    assert resp.status_code == 200
    assert resp.get_json()["signedByLearner"] is True
    assert resp.get_json()["status"] == "scheduled"

    login("assessor")
    data = client.post(f"/api/reviews/{review['id']}/sign", json={"role": "tutor"}).get_json()
    assert data["status"] == "completed"
    assert data["actualDate"] == date.today().isoformat()

    resp = client.post(f"/api/reviews/{review['id']}/reschedule", json={"newDate": _in_days(20)})
    assert resp.status_code == 400


def test_employer_signature_required_when_named(client, login, cohort):
    login("assessor")
    created = _schedule(client, cohort["learner"], employerId=cohort["other_assessor"])
    client.post(f"/api/reviews/{created['id']}/sign", json={"role": "tutor"})
    login("learner")
    assert client.post(f"/api/reviews/{created['id']}/sign", json={"role": "learner"}).get_json()["status"] == "scheduled"

    login("assessor", email="other.assessor@dev.local")
    data = client.post(f"/api/reviews/{created['id']}/sign", json={"role": "employer"}).get_json()
    assert data["signedByEmployer"] is True
    assert data["status"] == "completed"


def test_sign_rules(client, login, cohort, review):
    sign = f"/api/reviews/{review['id']}/sign"
    assert client.post(sign, json={"role": "manager"}).status_code == 400
    assert client.post(sign, json={"role": ["learner"]}).status_code == 400
    assert client.post(sign, json={"role": "tutor"}).status_code == 403
    assert client.post(sign, json={"role": "learner", "userId": cohort["assessor"]}).status_code == 403
    assert client.post(sign, json={"role": "employer"}).status_code == 400

    login("admin")
    resp = client.post(sign, json={"role": "learner", "userId": cohort["learner"]})
    assert resp.status_code == 200
    assert resp.get_json()["signedByLearner"] is True
