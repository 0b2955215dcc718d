"""API tests for tasks staff set for learners and their place on the dashboard."""

from datetime import date, timedelta

import pytest

NEXT_WEEK = (date.today() + timedelta(days=7)).isoformat()


def _ksb_ids(client, standard_id):
    ksbs = client.get(f"/api/apprenticeship-standard/{standard_id}/ksbs").get_json()
    return {k["code"]: k["id"] for k in ksbs}


def _task(learner_id, **overrides):
    body = {
        "assignedToId": learner_id,
        "title": "Draft a content calendar",
        "description": "Plan next month's posts across all channels.",
        "dueDate": NEXT_WEEK,
    }
    body.update(overrides)
    return body


def _create(client, learner_id, **overrides):
    resp = client.post("/api/tasks", json=_task(learner_id, **overrides))
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


@pytest.fixture()
def task(client, login, cohort):
    """A task set by the cohort assessor; the client is left logged in as the learner."""
    login("assessor")
    created = _create(client, cohort["learner"])
    login("learner")
    return created


# ---------------------------------------------------------------------------
# Create / list
# ---------------------------------------------------------------------------


def test_tutor_assigns_task_with_ksb(client, login, cohort):
    ksbs = _ksb_ids(client, cohort["standard"])
    login("assessor")
    created = _create(client, cohort["learner"], ksbId=ksbs["K2"])
    assert created["assignedById"] == cohort["assessor"]
    assert created["status"] == "pending"

    login("learner")
    tasks = client.get("/api/tasks").get_json()
    assert [t["id"] for t in tasks] == [created["id"]]
    assert tasks[0]["ksb"]["code"] == "K2"
    assert tasks[0]["ksb"]["description"] == "Content Strategy Development"
    assert tasks[0]["assignedBy"] == {
        "id": cohort["assessor"], "firstName": "Development", "lastName": "User", "role": "assessor",
    }


def test_tasks_listed_soonest_due_first(client, login, cohort):
    login("training_provider")
    later = _create(client, cohort["learner"], dueDate=(date.today() + timedelta(days=20)).isoformat())
    sooner = _create(client, cohort["learner"], dueDate=(date.today() + timedelta(days=2)).isoformat())
    assert [t["id"] for t in client.get("/api/tasks?assignedBy=me").get_json()] == [sooner["id"], later["id"]]
    listed = client.get(f"/api/tasks?learnerId={cohort['learner']}").get_json()
    assert [t["id"] for t in listed] == [sooner["id"], later["id"]]


def test_learner_cannot_assign_tasks(client, cohort):
    assert client.post("/api/tasks", json=_task(cohort["learner"])).status_code == 403


def test_operations_cannot_assign_tasks(client, login, cohort):
    login("operations")
    assert client.post("/api/tasks", json=_task(cohort["learner"])).status_code == 403


def test_unassociated_staff_cannot_assign(client, login, cohort):
    login("assessor", email="other.assessor@dev.local")
    assert client.post("/api/tasks", json=_task(cohort["learner"])).status_code == 403
    assert client.get(f"/api/tasks?learnerId={cohort['learner']}").status_code == 403


def test_task_validation(client, login, cohort):
    login("admin")
    resp = client.post("/api/tasks", json=_task(True, title="", dueDate="soon"))
    assert resp.status_code == 422
    assert set(resp.get_json()["errors"]) == {"assignedToId", "title", "dueDate"}

    resp = client.post("/api/tasks", json=_task(cohort["learner"], ksbId=99999))
    assert resp.status_code == 422
    assert resp.get_json()["errors"]["ksbId"] == "Unknown KSB"


def test_task_must_be_assigned_to_a_learner(client, login, cohort):
    login("admin")
    assert client.post("/api/tasks", json=_task(cohort["assessor"])).status_code == 404


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


def test_learner_can_only_change_status(client, task):
    resp = client.patch(f"/api/tasks/{task['id']}", json={"status": "completed", "title": "Something else"})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "completed"
    assert resp.get_json()["title"] == task["title"]


def test_learner_update_requires_valid_status(client, task):
    assert client.patch(f"/api/tasks/{task['id']}", json={"title": "New"}).status_code == 400
    assert client.patch(f"/api/tasks/{task['id']}", json={"status": "abandoned"}).status_code == 422


def test_learner_cannot_update_another_learners_task(client, login, task):
    login("learner", email="second.learner@dev.local")
    assert client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"}).status_code == 403


def test_staff_edit_only_tasks_they_set(client, login, task):
    login("iqa")
    assert client.patch(f"/api/tasks/{task['id']}", json={"title": "Changed by IQA"}).status_code == 403

    login("assessor")
    resp = client.patch(f"/api/tasks/{task['id']}", json={"title": "Draft a posting calendar", "status": "in_progress"})
    assert resp.status_code == 200
    assert resp.get_json()["title"] == "Draft a posting calendar"
    assert resp.get_json()["status"] == "in_progress"


def test_admin_edits_any_task(client, login, task):
    login("admin")
    resp = client.patch(f"/api/tasks/{task['id']}", json={"dueDate": "2030-01-31"})
    assert resp.status_code == 200
    assert resp.get_json()["dueDate"] == "2030-01-31"


def test_update_missing_task_returns_404(client, cohort):
    assert client.patch("/api/tasks/9999", json={"status": "completed"}).status_code == 404


def test_creator_deletes_task(client, login, task):
    assert client.delete(f"/api/tasks/{task['id']}").status_code == 403
    login("assessor")
    assert client.delete(f"/api/tasks/{task['id']}").status_code == 204
    assert client.get(f"/api/tasks/{task['id']}").status_code == 404


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def test_dashboard_shows_open_tasks_by_due_date(client, login, cohort):
    login("assessor")
    due = [date.today() + timedelta(days=d) for d in (9, 3, 6)]
    created = [_create(client, cohort["learner"], dueDate=d.isoformat()) for d in due]
    login("learner")
    client.patch(f"/api/tasks/{created[1]['id']}", json={"status": "completed"})

    data = client.get("/api/dashboard").get_json()
    assert [t["id"] for t in data["upcomingTasks"]] == [created[2]["id"], created[0]["id"]]
    assert data["openTaskCount"] == 2
