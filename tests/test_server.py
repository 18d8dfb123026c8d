"""Tests for the Flask API, using the test client over an in-memory store."""
import pytest

import board_server
from conftest import make_document, make_task
from statusboard.config import Config
from statusboard.document_store import MemoryDocumentStore


@pytest.fixture
def store():
    return MemoryDocumentStore(make_document(
        todo=[make_task("t1", "Write docs")],
        done=[make_task("t3", "Set up CI", completedAt="2026-01-01T00:00:00.000Z")],
    ))


@pytest.fixture
def client(store):
    board_server.app.config["BOARD_CONFIG"] = Config()
    board_server.app.config["DOCUMENT_STORE"] = store
    board_server.app.config["TESTING"] = True
    with board_server.app.test_client() as c:
        yield c
    board_server.app.config["DOCUMENT_STORE"] = None


def tasks_in(store, column):
    content, _ = store.read()
    return [t["id"] for t in content["projects"][0]["tasks"][column]]


class TestStatus:

    def test_returns_document_uncached(self, client):
        r = client.get("/api/status")
        assert r.status_code == 200
        assert r.headers["Cache-Control"] == "no-cache, no-store"
        assert r.headers["Access-Control-Allow-Origin"] == "*"
        assert r.get_json()["projects"][0]["id"] == "p1"

    def test_preflight(self, client):
        for path in ("/api/status", "/api/tasks", "/api/ideas", "/api/change-request"):
            r = client.open(path, method="OPTIONS")
            assert r.status_code == 204
            assert "X-API-Key" in r.headers["Access-Control-Allow-Headers"]

    def test_health(self, client):
        assert client.get("/health").get_json() == {"status": "ok", "store": "memory"}


class TestTasks:

    def test_add(self, client, store):
        r = client.post("/api/tasks", json={"action": "add", "task": {"title": "New"}, "projectId": "p1",
                                            "column": "todo"})
        assert r.status_code == 201
        body = r.get_json()
        assert body["ok"] is True
        assert tasks_in(store, "todo") == ["t1", body["task"]["id"]]

    def test_move(self, client, store):
        r = client.post("/api/tasks", json={"action": "move", "taskId": "t1", "projectId": "p1",
                                            "targetColumn": "carol"})
        assert r.get_json() == {"ok": True, "taskId": "t1", "from": "todo", "to": "upnext"}
        assert tasks_in(store, "upnext") == ["t1"]

    def test_complete_twice_keeps_one_copy(self, client, store):
        body = {"action": "complete", "taskId": "t1", "projectId": "p1", "completed": True}
        assert client.post("/api/tasks", json=body).get_json() == {"ok": True, "taskId": "t1", "completed": True}
        client.post("/api/tasks", json=body)
        assert tasks_in(store, "done") == ["t3", "t1"]

    def test_complete_rejects_non_boolean(self, client):
        r = client.post("/api/tasks", json={"action": "complete", "taskId": "t1", "completed": "yes"})
        assert r.status_code == 400

    def test_edit(self, client):
        r = client.post("/api/tasks", json={"action": "edit", "taskId": "t1", "projectId": "p1",
                                            "updates": {"title": "Docs"}})
        assert r.get_json()["task"]["title"] == "Docs"

    def test_subtask(self, client, store):
        r = client.post("/api/tasks", json={"action": "subtask", "taskId": "t1", "projectId": "p1",
                                            "subtaskAction": "add", "subtask": {"title": "Outline"}})
        assert r.status_code == 200
        content, _ = store.read()
        assert content["projects"][0]["tasks"]["todo"][0]["subtasks"][0]["title"] == "Outline"

    def test_unknown_task_is_404(self, client):
        r = client.post("/api/tasks", json={"action": "move", "taskId": "nope", "targetColumn": "done"})
        assert r.status_code == 404
        assert r.get_json()["error"] == "Task not found: nope"

    def test_unknown_action_is_400(self, client):
        r = client.post("/api/tasks", json={"action": "explode"})
        assert r.status_code == 400
        assert "detail" in r.get_json()

    def test_unexpected_error_is_500_json(self, client, store, monkeypatch):
        def broken():
            raise RuntimeError("disk on fire")
        monkeypatch.setattr(store, "read", broken)
        r = client.post("/api/tasks", json={"action": "move", "taskId": "t1", "targetColumn": "done"})
        assert r.status_code == 500
        assert r.get_json() == {"error": "Internal error", "detail": "disk on fire"}


class TestIdeasAndChangeRequests:

    def test_idea_lifecycle(self, client, store):
        r = client.post("/api/ideas", json={"action": "add", "title": "Dark mode", "id": "idea-1"})
        assert r.status_code == 201
        assert r.get_json()["idea"]["id"] == "idea-1"
        r = client.post("/api/ideas", json={"action": "edit", "id": "idea-1", "title": "Darker"})
        assert r.get_json()["idea"]["title"] == "Darker"
        assert client.post("/api/ideas", json={"action": "delete", "id": "idea-1"}).get_json() == {"ok": True}
        content, _ = store.read()
        assert content["ideas"] == []

    def test_change_request(self, client, store):
        r = client.post("/api/change-request", json={"text": "Bigger font"})
        assert r.status_code == 201
        req_id = r.get_json()["id"]
        r = client.post("/api/change-request", json={"action": "cancel", "id": req_id})
        assert r.get_json() == {"ok": True}
        content, _ = store.read()
        assert content["changeRequests"][0]["status"] == "cancelled"

    def test_missing_text_is_400(self, client):
        assert client.post("/api/change-request", json={}).status_code == 400


class TestAuthAndConfig:

    def test_api_key_enforced_when_configured(self, client):
        board_server.app.config["BOARD_CONFIG"] = Config(api_secret="s3cret")
        body = {"action": "complete", "taskId": "t1", "completed": True}
        assert client.post("/api/tasks", json=body).status_code == 401
        assert client.post("/api/tasks", json=body, headers={"X-API-Key": "wrong"}).status_code == 403
        assert client.post("/api/tasks", json=body, headers={"X-API-Key": "s3cret"}).status_code == 200
        # reads stay open
        assert client.get("/api/status").status_code == 200

    def test_missing_github_token_is_misconfiguration(self, client):
        board_server.app.config["DOCUMENT_STORE"] = None
        board_server.app.config["BOARD_CONFIG"] = Config(github_token="")
        r = client.post("/api/tasks", json={"action": "complete", "taskId": "t1"})
        assert r.status_code == 500
        assert r.get_json()["error"].startswith("Server not configured")
        assert client.get("/health").status_code == 503
