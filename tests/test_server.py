"""
Tests for the DevFlow HTTP API (Flask test client).
"""
import json
from unittest.mock import MagicMock

import pytest

import devflow_server
from devflow.github_import import GitHubImportError
from devflow.llm import ChatResult
from devflow.store import TaskStore

SECRET = "s3cret"
AUTH = {"X-API-Key": SECRET, "X-User-Id": "u1"}


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "devflow.db")
    monkeypatch.setenv("DEVFLOW_DB", path)
    monkeypatch.setenv("DEVFLOW_API_SECRET", SECRET)
    monkeypatch.setenv("DEVFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("DEVFLOW_DEFAULT_USER", raising=False)
    return path


@pytest.fixture
def client(db_path):
    devflow_server.app.config["TESTING"] = True
    with devflow_server.app.test_client() as c:
        yield c


@pytest.fixture
def llm(monkeypatch):
    fake = MagicMock()
    monkeypatch.setattr(devflow_server, "get_chat_client", lambda: fake)
    return fake


def _create_task(client, **fields):
    body = {"title": "Task"}
    body.update(fields)
    r = client.post("/api/tasks", json=body, headers=AUTH)
    assert r.status_code == 201, r.get_json()
    return r.get_json()["task"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_health(client, db_path):
    r = client.get("/health")
    assert r.get_json() == {"status": "ok", "db": db_path}


def test_mutation_requires_key(client):
    assert client.post("/api/tasks", json={"title": "x"}).status_code == 401
    r = client.post("/api/tasks", json={"title": "x"}, headers={"X-API-Key": "wrong"})
    assert r.status_code == 403


def test_mutation_without_secret_configured(client, monkeypatch):
    monkeypatch.delenv("DEVFLOW_API_SECRET")
    r = client.post("/api/tasks", json={"title": "x"}, headers=AUTH)
    assert r.status_code == 503


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Tasks & board
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_task_crud(client):
    task = _create_task(client, title="Write tests", priority="high", tags=["qa"])
    assert task["status"] == "todo"
    assert task["user_id"] == "u1"

    r = client.put(f"/api/tasks/{task['id']}", json={"description": "pytest", "id": "hijack"}, headers=AUTH)
    assert r.get_json()["task"]["description"] == "pytest"
    assert r.get_json()["task"]["id"] == task["id"]

    r = client.get(f"/api/tasks/{task['id']}", headers={"X-User-Id": "u1"})
    assert r.get_json()["task"]["title"] == "Write tests"

    # Other users cannot see it
    assert client.get(f"/api/tasks/{task['id']}", headers={"X-User-Id": "u2"}).status_code == 404

    assert client.delete(f"/api/tasks/{task['id']}", headers=AUTH).status_code == 200
    assert client.delete(f"/api/tasks/{task['id']}", headers=AUTH).status_code == 404


def test_create_task_validation(client):
    r = client.post("/api/tasks", json={"title": ""}, headers=AUTH)
    assert r.status_code == 400
    r = client.post("/api/tasks", json={"title": "x", "status": "blocked"}, headers=AUTH)
    assert r.status_code == 400
    assert "Invalid TaskStatus" in r.get_json()["error"]


def test_list_tasks_filter_and_sort(client):
    _create_task(client, title="Alpha", priority="low", tags=["a"])
    _create_task(client, title="Beta", priority="high", tags=["b"])
    _create_task(client, title="Gamma", priority="med", status="done")

    r = client.get("/api/tasks?sort_by=priority&sort_order=desc", headers={"X-User-Id": "u1"})
    data = r.get_json()
    assert [t["title"] for t in data["tasks"]] == ["Beta", "Gamma", "Alpha"]
    assert data["tags"] == ["a", "b"]

    r = client.get("/api/tasks?status=done", headers={"X-User-Id": "u1"})
    assert [t["title"] for t in r.get_json()["tasks"]] == ["Gamma"]

    r = client.get("/api/tasks?tag=a&tag=b", headers={"X-User-Id": "u1"})
    assert r.get_json()["count"] == 2

    assert client.get("/api/tasks?sort_by=color").status_code == 400


def test_board_columns(client):
    _create_task(client, title="One")
    _create_task(client, title="Two", status="doing")

    data = client.get("/api/board", headers={"X-User-Id": "u1"}).get_json()
    assert [c["value"] for c in data["columns"]] == ["todo", "doing", "review", "done"]
    assert data["stats"]["by_status"] == {"todo": 1, "doing": 1, "review": 0, "done": 0}
    assert data["columns"][3]["placeholder"] == "No tasks in done"

    data = client.get("/api/board?columns=todo,doing,done", headers={"X-User-Id": "u1"}).get_json()
    assert [c["label"] for c in data["columns"]] == ["To Do", "In Progress", "Done"]

    assert client.get("/api/board?columns=todo,blocked").status_code == 400


def test_board_drop(client, db_path):
    one = _create_task(client, title="One")
    two = _create_task(client, title="Two", status="doing")

    r = client.post("/api/board/drop", json={"task_id": one["id"], "over_id": "done"}, headers=AUTH)
    assert r.get_json()["changed"] is True
    assert r.get_json()["task"]["status"] == "done"
    assert TaskStore(db_path).get_task(one["id"]).status.value == "done"

    # Dropping onto a task joins that task's column
    r = client.post("/api/board/drop", json={"task_id": one["id"], "over_id": two["id"]}, headers=AUTH)
    assert r.get_json()["status"] == "doing"

    # No target
    r = client.post("/api/board/drop", json={"task_id": one["id"], "over_id": None}, headers=AUTH)
    assert r.get_json() == {"changed": False, "status": None}

    r = client.post("/api/board/drop", json={"task_id": "missing", "over_id": "done"}, headers=AUTH)
    assert r.status_code == 404


def test_task_status_route(client):
    task = _create_task(client)
    r = client.post(f"/api/tasks/{task['id']}/status", json={"status": "review"}, headers=AUTH)
    assert r.get_json()["changed"] is True
    r = client.post(f"/api/tasks/{task['id']}/status", json={"status": "review"}, headers=AUTH)
    assert r.get_json()["changed"] is False
    r = client.post(f"/api/tasks/{task['id']}/status", json={"status": "nope"}, headers=AUTH)
    assert r.status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Other records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_projects_with_task_counts(client):
    r = client.post("/api/projects", json={"name": "DevFlow"}, headers=AUTH)
    project = r.get_json()["project"]
    _create_task(client, project_id=project["id"])

    data = client.get("/api/projects", headers={"X-User-Id": "u1"}).get_json()
    assert data["projects"][0]["task_count"] == 1

    assert client.delete(f"/api/projects/{project['id']}", headers=AUTH).status_code == 200


def test_snippets_filtering(client):
    client.post("/api/snippets", json={"file_path": "a.py", "code_text": "import os"}, headers=AUTH)
    client.post("/api/snippets", json={"file_path": "b.sql", "code_text": "SELECT 1"}, headers=AUTH)

    r = client.get("/api/snippets?language=SQL", headers={"X-User-Id": "u1"})
    assert [s["file_path"] for s in r.get_json()["snippets"]] == ["b.sql"]
    assert client.get("/api/snippets?date_from=yesterday").status_code == 400


def test_templates_render_and_use(client):
    r = client.post("/api/templates", json={
        "name": "Review", "template_text": "Review {{code}} for {{focus}}",
    }, headers=AUTH)
    template = r.get_json()["template"]
    assert template["variables"] == ["code", "focus"]

    r = client.post(f"/api/templates/{template['id']}/render", json={"values": {"code": "x = 1"}},
                    headers={"X-User-Id": "u1"})
    assert r.get_json() == {"text": "Review x = 1 for {{focus}}", "missing": ["focus"]}

    r = client.post(f"/api/templates/{template['id']}/use", headers=AUTH)
    assert r.get_json()["usage_count"] == 1
    assert client.post("/api/templates/missing/use", headers=AUTH).status_code == 404


def test_reviews_crud(client):
    r = client.post("/api/reviews", json={"pr_url": "https://github.com/o/r/pull/1"}, headers=AUTH)
    review = r.get_json()["review"]
    r = client.put(f"/api/reviews/{review['id']}", json={"status": "merged"}, headers=AUTH)
    assert r.get_json()["review"]["status"] == "merged"
    r = client.get("/api/reviews?status=merged", headers={"X-User-Id": "u1"})
    assert r.get_json()["count"] == 1


def test_completion_and_goals(client):
    task = _create_task(client, estimated_hours=4)
    r = client.post("/api/analytics/completion", json={"task_id": task["id"], "actual_hours": 2}, headers=AUTH)
    assert r.status_code == 201
    assert r.get_json()["analytics"]["efficiency_score"] == 2.0

    r = client.post("/api/goals", json={"goal_type": "tasks_completed", "target_value": 5}, headers=AUTH)
    assert r.status_code == 201
    goals = client.get("/api/goals", headers={"X-User-Id": "u1"}).get_json()["goals"]
    assert goals[0]["goal_type"] == "tasks_completed"


def test_task_input_types(client):
    task = _create_task(client, title="Plan sprint", priority="medium", estimated_hours="3")
    assert task["priority"] == "med"
    assert task["estimated_hours"] == 3.0

    assert client.post("/api/tasks", json={"title": 5}, headers=AUTH).status_code == 400
    r = client.post("/api/tasks", json={"title": "x", "estimated_hours": "a while"}, headers=AUTH)
    assert r.status_code == 400
    assert "estimated_hours" in r.get_json()["error"]


def test_completion_and_goal_number_validation(client):
    task = _create_task(client)
    url = "/api/analytics/completion"
    r = client.post(url, json={"task_id": task["id"], "actual_hours": "2"}, headers=AUTH)
    assert r.status_code == 201
    assert r.get_json()["analytics"]["actual_hours"] == 2.0

    r = client.post(url, json={"task_id": task["id"], "actual_hours": "lots"}, headers=AUTH)
    assert r.status_code == 400
    r = client.post(url, json={"task_id": task["id"], "actual_hours": 1, "estimated_hours": [1]}, headers=AUTH)
    assert r.status_code == 400

    r = client.post("/api/goals", json={"goal_type": "hours", "target_value": 5, "period_days": "soon"},
                    headers=AUTH)
    assert r.status_code == 400
    r = client.post("/api/goals", json={"goal_type": "hours", "target_value": "many"}, headers=AUTH)
    assert r.status_code == 400


def test_private_templates_hidden_from_other_users(client):
    r = client.post("/api/templates", json={"name": "Mine", "template_text": "Hi {{name}}"}, headers=AUTH)
    template_id = r.get_json()["template"]["id"]
    other = {"X-API-Key": SECRET, "X-User-Id": "u2"}

    r = client.post(f"/api/templates/{template_id}/render", json={"values": {}}, headers=other)
    assert r.status_code == 404
    assert client.post(f"/api/templates/{template_id}/use", headers=other).status_code == 404
    assert client.post(f"/api/templates/{template_id}/use", headers=AUTH).get_json()["usage_count"] == 1

    r = client.post("/api/templates", json={"name": "Shared", "template_text": "x", "is_public": True},
                    headers=AUTH)
    public_id = r.get_json()["template"]["id"]
    assert client.post(f"/api/templates/{public_id}/use", headers=other).status_code == 200

    r = client.post(f"/api/templates/{template_id}/render", json={"values": ["x"]}, headers=AUTH)
    assert r.status_code == 400


def test_update_reports_failed_save(client, monkeypatch):
    project = client.post("/api/projects", json={"name": "P"}, headers=AUTH).get_json()["project"]
    snippet = client.post("/api/snippets", json={"file_path": "a.py", "code_text": "x"},
                          headers=AUTH).get_json()["snippet"]
    review = client.post("/api/reviews", json={"pr_url": "https://github.com/o/r/pull/2"},
                         headers=AUTH).get_json()["review"]

    for name in ("save_project", "save_snippet", "save_review"):
        monkeypatch.setattr(TaskStore, name, lambda self, record: False)

    r = client.put(f"/api/projects/{project['id']}", json={"name": "Renamed"}, headers=AUTH)
    assert r.status_code == 500
    r = client.put(f"/api/snippets/{snippet['id']}", json={"code_text": "y = 2"}, headers=AUTH)
    assert r.status_code == 500
    r = client.put(f"/api/reviews/{review['id']}", json={"status": "merged"}, headers=AUTH)
    assert r.status_code == 500


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# AI & GitHub
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_ai_chat(client, llm):
    llm.complete.return_value = ChatResult(text="Try pytest fixtures.", tokens_used=12, model="gpt-4o-mini")
    r = client.post("/api/ai/chat", json={"prompt": "How to test?"}, headers=AUTH)
    data = r.get_json()
    assert data["response"] == "Try pytest fixtures."
    assert data["tokens_used"] == 12

    prompts = client.get("/api/prompts", headers={"X-User-Id": "u1"}).get_json()["prompts"]
    assert prompts[0]["id"] == data["prompt_id"]


def test_ai_task_assistant(client, llm):
    task = _create_task(client, title="Refactor store")
    llm.complete.return_value = ChatResult(text=json.dumps({"suggested_priority": "high", "reasoning": "blocks"}))
    r = client.post("/api/ai/task-assistant", json={"task_id": task["id"], "suggestion_type": "priority"}, headers=AUTH)
    data = r.get_json()
    assert data["suggestion"] == {"kind": "priority", "suggested_priority": "high", "reasoning": "blocks"}
    assert 0.5 <= data["confidence_score"] <= 0.95

    r = client.post("/api/ai/task-assistant", json={"task_id": "missing", "suggestion_type": "priority"}, headers=AUTH)
    assert r.status_code == 404


def test_ai_estimate_and_insights(client, llm):
    llm.complete.side_effect = [
        ChatResult(text='{"estimated_hours": 3}'),
        ChatResult(text='{"efficiency_trend": "improving"}'),
    ]
    r = client.post("/api/ai/estimate", json={"task_data": {"title": "x"}, "estimation_type": "time_estimate"},
                    headers=AUTH)
    assert r.get_json()["estimation"]["kind"] == "time_estimate"
    assert r.get_json()["estimation"]["estimated_hours"] == 3.0

    r = client.post("/api/ai/insights", json={"time_range": "7_days"}, headers=AUTH)
    data = r.get_json()
    assert data["metrics"]["time_range"] == "7_days"
    assert data["insights"]["efficiency_trend"] == "improving"


def test_ai_llm_failure_is_502(client, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    r = client.post("/api/ai/chat", json={"prompt": "hi"}, headers=AUTH)
    assert r.status_code == 502


def test_github_import(client, monkeypatch):
    importer = MagicMock()
    importer.import_repo.return_value = {
        "files": [{"path": "app.py", "content": "print(1)"}],
        "issues": [],
        "metadata": {"full_name": "o/r"},
    }
    monkeypatch.setattr(devflow_server, "GitHubImporter", lambda **kwargs: importer)

    r = client.post("/api/github/import", json={"repo_url": "https://github.com/o/r", "save_snippets": True},
                    headers=AUTH)
    assert r.get_json()["saved_snippets"] == 1
    snippets = client.get("/api/snippets", headers={"X-User-Id": "u1"}).get_json()["snippets"]
    assert snippets[0]["file_path"] == "app.py"


def test_github_import_errors(client, monkeypatch):
    importer = MagicMock()
    importer.import_repo.side_effect = GitHubImportError("Repository not found or is private", 404)
    monkeypatch.setattr(devflow_server, "GitHubImporter", lambda **kwargs: importer)
    r = client.post("/api/github/import", json={"repo_url": "https://github.com/o/r"}, headers=AUTH)
    assert r.status_code == 404

    importer.import_repo.side_effect = GitHubImportError("Invalid GitHub URL")
    r = client.post("/api/github/import", json={"repo_url": "nope"}, headers=AUTH)
    assert r.status_code == 400
