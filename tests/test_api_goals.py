"""API tests for learning goals."""

import pytest


@pytest.fixture()
def goal(client, cohort):
    resp = client.post("/api/learning-goals", json={
        "title": "Pass the Google Ads certification",
        "targetDate": "2030-06-30",
    })
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_learner_sets_and_completes_goal(client, goal, cohort):
    assert goal["learnerId"] == cohort["learner"]
    assert goal["status"] == "active"
    resp = client.patch(f"/api/learning-goals/{goal['id']}", json={"status": "completed"})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "completed"
    assert client.get("/api/learning-goals?status=active").get_json() == []


def test_goals_listed_by_target_date(client, goal):
    client.post("/api/learning-goals", json={"title": "Build a reporting dashboard"})
    sooner = client.post("/api/learning-goals", json={"title": "Run an A/B test", "targetDate": "2029-01-01"}).get_json()
    titles = [g["title"] for g in client.get("/api/learning-goals").get_json()]
    assert titles == [sooner["title"], goal["title"], "Build a reporting dashboard"]


def test_goal_validation(client, cohort):
    resp = client.post("/api/learning-goals", json={"title": "Go", "targetDate": "June", "status": "paused"})
    assert resp.status_code == 422
    assert set(resp.get_json()["errors"]) == {"title", "targetDate", "status"}


def test_tutor_sees_and_sets_goals(client, login, cohort, goal):
    login("assessor")
    listed = client.get(f"/api/learning-goals?learnerId={cohort['learner']}").get_json()
    assert [g["id"] for g in listed] == [goal["id"]]
    resp = client.post("/api/learning-goals", json={"learnerId": cohort["learner"], "title": "Shadow the SEO team"})
    assert resp.status_code == 201
    assert client.delete(f"/api/learning-goals/{goal['id']}").status_code == 403


def test_other_learners_cannot_see_goals(client, login, goal):
    login("learner", email="second.learner@dev.local")
    assert client.get(f"/api/learning-goals/{goal['id']}").status_code == 403
    assert client.patch(f"/api/learning-goals/{goal['id']}", json={"status": "completed"}).status_code == 403


def test_learner_deletes_goal(client, goal):
    assert client.delete(f"/api/learning-goals/{goal['id']}").status_code == 204
    assert client.get(f"/api/learning-goals/{goal['id']}").status_code == 404
