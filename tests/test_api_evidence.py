"""API tests for evidence submission and review, KSB progress and the dashboard."""

import pytest


def _ksb_ids(client, standard_id):
    ksbs = client.get(f"/api/apprenticeship-standard/{standard_id}/ksbs").get_json()
    return {k["code"]: k["id"] for k in ksbs}


def _evidence(ksb_ids, **overrides):
    body = {
        "title": "Campaign performance report",
        "description": "Quarterly report on paid social campaign performance.",
        "evidenceType": "document",
        "reflection": "Showed how I measure and communicate campaign ROI.",
        "externalLink": "https://example.com/report",
        "ksbIds": ksb_ids,
    }
    body.update(overrides)
    return body


@pytest.fixture()
def ksbs(client, cohort):
    return _ksb_ids(client, cohort["standard"])


def _create(client, ksb_ids, **overrides):
    resp = client.post("/api/evidence", json=_evidence(ksb_ids, **overrides))
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def _approve(client, login, evidence_id):
    login("assessor")
    resp = client.post(f"/api/evidence/{evidence_id}/review", json={"decision": "approved"})
    assert resp.status_code == 200
    login("learner")


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


def test_learner_creates_evidence(client, ksbs):
    item = _create(client, [ksbs["K1"], ksbs["S1"]])
    assert item["status"] == "draft"
    assert item["ksbIds"] == sorted([ksbs["K1"], ksbs["S1"]])
    assert item["submissionDate"] is None


def test_create_submitted_sets_submission_date(client, ksbs):
    item = _create(client, [ksbs["K1"]], status="submitted")
    assert item["status"] == "submitted"
    assert item["submissionDate"] is not None


def test_evidence_validation(client, ksbs):
    resp = client.post("/api/evidence", json=_evidence([], title="abc"))
    assert resp.status_code == 422
    assert set(resp.get_json()["errors"]) == {"title", "ksbIds"}


def test_evidence_rejects_unknown_ksb(client, ksbs):
    resp = client.post("/api/evidence", json=_evidence([999999]))
    assert resp.status_code == 422


def test_staff_cannot_create_evidence(client, login, ksbs):
    login("assessor")
    assert client.post("/api/evidence", json=_evidence([ksbs["K1"]])).status_code == 403


def test_list_with_status_filter_and_paging(client, ksbs):
    for i in range(3):
        _create(client, [ksbs["K1"]], title=f"Draft evidence {i}")
    _create(client, [ksbs["K2"]], status="submitted")

    data = client.get("/api/evidence?status=draft&limit=2&offset=0").get_json()
    assert data["total"] == 3
    assert len(data["items"]) == 2
    assert client.get("/api/evidence?status=draft&limit=2&offset=2").get_json()["items"][0]["status"] == "draft"
    assert client.get("/api/evidence?status=submitted").get_json()["total"] == 1


def test_staff_see_only_associated_evidence(client, login, ksbs):
    _create(client, [ksbs["K1"]])
    login("assessor")
    assert client.get("/api/evidence").get_json()["total"] == 1
    login("assessor", email="other.assessor@dev.local")
    assert client.get("/api/evidence").get_json()["total"] == 0


def test_update_draft_and_lock_after_submit(client, ksbs):
    item = _create(client, [ksbs["K1"]])
    resp = client.patch(f"/api/evidence/{item['id']}", json={"title": "Updated report title", "ksbIds": [ksbs["K2"]]})
    assert resp.status_code == 200
    assert resp.get_json()["title"] == "Updated report title"
    assert resp.get_json()["ksbIds"] == [ksbs["K2"]]

    assert client.post(f"/api/evidence/{item['id']}/submit").status_code == 200
    assert client.patch(f"/api/evidence/{item['id']}", json={"title": "Another new title"}).status_code == 403
    assert client.post(f"/api/evidence/{item['id']}/submit").status_code == 400


def test_review_needs_revision_requires_feedback(client, login, ksbs):
    item = _create(client, [ksbs["K1"]], status="submitted")
    login("assessor")
    resp = client.post(f"/api/evidence/{item['id']}/review", json={"decision": "needs_revision"})
    assert resp.status_code == 400
    resp = client.post(
        f"/api/evidence/{item['id']}/review",
        json={"decision": "needs_revision", "feedbackMessage": "Add a link to the live dashboard."},
    )
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "needs_revision"

    # Back with the learner: editable again and resubmittable
    login("learner")
    assert client.patch(f"/api/evidence/{item['id']}", json={"title": "Revised campaign report"}).status_code == 200
    assert client.post(f"/api/evidence/{item['id']}/submit").get_json()["status"] == "submitted"


def test_review_rules(client, login, ksbs):
    item = _create(client, [ksbs["K1"]])
    login("assessor")
    assert client.post(f"/api/evidence/{item['id']}/review", json={"decision": "approved"}).status_code == 400

    login("learner")
    client.post(f"/api/evidence/{item['id']}/submit")
    assert client.post(f"/api/evidence/{item['id']}/review", json={"decision": "approved"}).status_code == 403

    login("assessor", email="other.assessor@dev.local")
    assert client.post(f"/api/evidence/{item['id']}/review", json={"decision": "approved"}).status_code == 403

    login("operations")
    assert client.post(f"/api/evidence/{item['id']}/review", json={"decision": "approved"}).status_code == 403

    login("iqa")
    assert client.post(f"/api/evidence/{item['id']}/review", json={"decision": "maybe"}).status_code == 400
    resp = client.post(f"/api/evidence/{item['id']}/review", json={"decision": "approved"})
    assert resp.status_code == 200
    assert resp.get_json()["reviewerId"] is not None


# ---------------------------------------------------------------------------
# KSB progress
# ---------------------------------------------------------------------------


def test_ksb_progress_counts_only_approved(client, login, cohort, ksbs):
    approved = _create(client, [ksbs["K1"], ksbs["S1"]], status="submitted")
    _create(client, [ksbs["K2"]], status="submitted")
    _approve(client, login, approved["id"])

    data = client.get(f"/api/ksb-progress/{cohort['learner']}").get_json()
    progress = {p["type"]: p for p in data["progress"]}
    assert (progress["knowledge"]["achieved"], progress["knowledge"]["total"]) == (1, 3)
    assert (progress["skill"]["achieved"], progress["skill"]["total"]) == (1, 2)
    assert progress["behavior"]["achieved"] == 0
    assert data["overallPercent"] == round(2 / 7 * 100, 1)

    codes = [f["code"] for f in data["focusAreas"]]
    assert len(codes) == 5
    assert "K1" not in codes and "S1" not in codes
    assert all(f["remaining"] == 1 for f in data["focusAreas"])


def test_ksb_progress_limit(client, cohort):
    data = client.get(f"/api/ksb-progress/{cohort['learner']}?limit=2").get_json()
    assert [f["code"] for f in data["focusAreas"]] == ["B1", "B2"]


def test_ksb_progress_without_standard_is_not_applicable(client, login, make_profile):
    learner = login("learner", email="no.standard@dev.local")
    make_profile(learner["id"])
    data = client.get(f"/api/ksb-progress/{learner['id']}").get_json()
    assert all(p["applicable"] is False and p["percent"] == 0 for p in data["progress"])
    assert data["overallPercent"] == 0


def test_ksb_detail(client, login, cohort, ksbs):
    item = _create(client, [ksbs["K1"]], status="submitted")
    _approve(client, login, item["id"])
    client.post(
        "/api/otj-logs",
        json={
            "date": "2024-03-11",
            "durationMinutes": 120,
            "activityType": "research",
            "description": "Read about marketing attribution models",
            "ksbId": ksbs["K1"],
        },
    )
    data = client.get(f"/api/ksb-progress/{cohort['learner']}/k1").get_json()
    assert data["ksb"]["code"] == "K1"
    assert data["achieved"] is True
    assert data["otjHours"] == 2.0
    assert [e["id"] for e in data["evidence"]] == [item["id"]]
    assert client.get(f"/api/ksb-progress/{cohort['learner']}/Z9").status_code == 404


def test_ksb_progress_access_control(client, login, cohort):
    login("learner", email="second.learner@dev.local")
    assert client.get(f"/api/ksb-progress/{cohort['learner']}").status_code == 403


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def test_dashboard_composes_learner_view(client, login, cohort, ksbs):
    for i in range(6):
        _create(client, [ksbs["K1"]], title=f"Evidence number {i}")
    data = client.get("/api/dashboard").get_json()

    assert data["user"]["id"] == cohort["learner"]
    assert data["standard"]["code"] == "ST0122"
    assert data["otj"]["minimumOtjHours"] == 6
    assert data["otj"]["currentWeek"]["totalMinutes"] == 0
    assert len(data["otj"]["weekly"]["weeks"]) == 8
    assert [p["type"] for p in data["ksb"]["progress"]] == ["knowledge", "skill", "behavior"]
    assert len(data["recentEvidence"]) == 5
    assert data["unreadFeedbackCount"] == 0


def test_dashboard_without_profile_returns_404(client, login):
    login("learner", email="no.profile@dev.local")
    assert client.get("/api/dashboard").status_code == 404


def test_dashboard_without_standard_uses_default_minimum(client, login, make_profile):
    learner = login("learner", email="no.standard@dev.local")
    make_profile(learner["id"])
    data = client.get("/api/dashboard").get_json()
    assert data["standard"] is None
    assert data["otj"]["minimumOtjHours"] == 6


def test_staff_view_learner_dashboard(client, login, cohort):
    login("training_provider")
    resp = client.get(f"/api/dashboard?learnerId={cohort['learner']}")
    assert resp.status_code == 200
    assert resp.get_json()["user"]["id"] == cohort["learner"]


def test_feedback_can_be_marked_read(client, login, ksbs):
    item = _create(client, [ksbs["K1"]], status="submitted")
    login("assessor")
    client.post(
        f"/api/evidence/{item['id']}/review",
        json={"decision": "needs_revision", "feedbackMessage": "Please add more detail."},
    )
    login("learner")
    feedback = client.get("/api/dashboard").get_json()["unreadFeedback"]
    assert len(feedback) == 1

    assert client.post(f"/api/feedback/{feedback[0]['id']}/read").status_code == 200
    assert client.get("/api/dashboard").get_json()["unreadFeedbackCount"] == 0
