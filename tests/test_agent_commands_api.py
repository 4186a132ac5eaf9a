"""Tests for the command queue HTTP API."""

import os
from unittest import mock

import pytest
from fastapi.testclient import TestClient

from taskgate.api import app


@pytest.fixture
def client():
    """Test client with the application lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def worker_client():
    """Test client with an enabled noop worker that only ticks on demand."""
    env = {
        "TASKGATE_WORKER_ENABLED": "true",
        "TASKGATE_WORKER_RUNNER": "noop",
        "TASKGATE_WORKER_INTERVAL_SECONDS": "300",
    }
    with mock.patch.dict(os.environ, env):
        with TestClient(app) as test_client:
            yield test_client


def create(client, **fields):
    body = {"title": "Restart nginx", **fields}
    response = client.post("/v1/agent/commands", json=body)
    assert response.status_code == 201, response.text
    return response.json()["command"]


class TestHealthAndStatus:
    """Test service endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_status_reports_store_and_memos(self, client):
        response = client.get("/v1/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        dependencies = {dep["name"]: dep for dep in data["dependencies"]}
        assert dependencies["duckdb"]["status"] == "ok"
        assert dependencies["memos"]["status"] == "disabled"
        assert data["worker"]["store_mode"] == "duckdb"

    def test_status_degraded_on_memory_store(self):
        """Test that the in-memory fallback is reported as degraded."""
        with mock.patch.dict(os.environ, {"TASKGATE_DB_PATH": ""}):
            with TestClient(app) as client:
                data = client.get("/v1/status").json()

        assert data["status"] == "degraded"
        memory = next(dep for dep in data["dependencies"] if dep["name"] == "memory")
        assert memory["message"] == "TASKGATE_DB_PATH is empty; using in-memory storage."

    def test_request_id_header(self, client):
        """Test that a caller-supplied request id is echoed back."""
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_request_id_generated(self, client):
        response = client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 36


class TestCreateAndList:
    """Test creating and listing commands."""

    def test_create_command(self, client):
        response = client.post(
            "/v1/agent/commands",
            json={"title": "Restart nginx", "details": "prod only", "created_by": "alice"},
        )

        assert response.status_code == 201
        data = response.json()
        command = data["command"]
        assert command["status"] == "pending_confirmation"
        assert command["details"] == "prod only"
        assert command["created_by"] == "alice"
        assert command["confirmed_at"] == ""
        assert data["memos"]["enabled"] is False

    def test_create_without_confirmation(self, client):
        command = create(client, requires_confirmation=False)

        assert command["status"] == "confirmed"

    @pytest.mark.parametrize(
        "body",
        [{"title": "ab"}, {}, {"title": 123}, {"title": "Valid title", "details": "x" * 4001}],
    )
    def test_create_invalid(self, client, body):
        """Test that bad input maps to 400 with the error schema."""
        response = client.post("/v1/agent/commands", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    def test_list_commands(self, client):
        first = create(client, title="First command")
        second = create(client, title="Second command", requires_confirmation=False)

        response = client.get("/v1/agent/commands")

        assert response.status_code == 200
        data = response.json()
        assert data["store_mode"] == "duckdb"
        assert [item["id"] for item in data["commands"]] == [second["id"], first["id"]]

    def test_list_filters_and_limits(self, client):
        create(client, title="First command")
        create(client, title="Second command", requires_confirmation=False)
        create(client, title="Third command", requires_confirmation=False)

        confirmed = client.get("/v1/agent/commands", params={"status": "confirmed"}).json()
        limited = client.get("/v1/agent/commands", params={"limit": 1}).json()

        assert {item["title"] for item in confirmed["commands"]} == {
            "Second command",
            "Third command",
        }
        assert [item["title"] for item in limited["commands"]] == ["Third command"]

    @pytest.mark.parametrize("limit", ["0", "201", "abc"])
    def test_list_invalid_limit(self, client, limit):
        response = client.get("/v1/agent/commands", params={"limit": limit})

        assert response.status_code == 400
        assert response.json()["error"] == "validation"


class TestTransitions:
    """Test transition routes and error mapping."""

    def test_confirm_and_reject(self, client):
        to_confirm = create(client)
        to_reject = create(client, title="Drop tables")

        confirmed = client.post(
            f"/v1/agent/commands/{to_confirm['id']}/confirm", json={"actor": "bob"}
        )
        rejected = client.post(
            f"/v1/agent/commands/{to_reject['id']}/reject", json={"reason": "Too risky"}
        )

        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "confirmed"
        assert confirmed.json()["confirmed_by"] == "bob"
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"
        assert rejected.json()["error"] == "Too risky"

    def test_confirm_without_body(self, client):
        command = create(client)

        response = client.post(f"/v1/agent/commands/{command['id']}/confirm")

        assert response.status_code == 200
        assert response.json()["confirmed_by"] == "unknown"

    def test_conflict_maps_to_409(self, client):
        command = create(client)
        client.post(f"/v1/agent/commands/{command['id']}/confirm")

        response = client.post(f"/v1/agent/commands/{command['id']}/confirm")

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "conflict"
        assert "'confirmed'" in body["message"]

    def test_unknown_id_maps_to_404(self, client):
        response = client.post("/v1/agent/commands/does-not-exist/start", json={})

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "message": "Command not found."}

    def test_manual_execution_flow(self, client):
        """Test start, complete and fail as a manual override of the worker."""
        ok = create(client, requires_confirmation=False)
        bad = create(client, title="Flaky job", requires_confirmation=False)

        started = client.post(f"/v1/agent/commands/{ok['id']}/start", json={"actor": "me"})
        completed = client.post(
            f"/v1/agent/commands/{ok['id']}/complete", json={"result": "all good"}
        )
        client.post(f"/v1/agent/commands/{bad['id']}/start")
        failed = client.post(f"/v1/agent/commands/{bad['id']}/fail", json={"result": "exit 1"})

        assert started.json()["status"] == "in_progress"
        assert started.json()["started_by"] == "me"
        assert completed.json()["status"] == "completed"
        assert completed.json()["result"] == "all good"
        assert failed.json()["status"] == "failed"
        assert failed.json()["error"] == "exit 1"

    def test_update_context(self, client):
        command = create(client, memos_query="old")

        response = client.post(
            f"/v1/agent/commands/{command['id']}/context", json={"memos_context": "notes"}
        )

        assert response.status_code == 200
        assert response.json()["memos_query"] == "old"
        assert response.json()["memos_context"] == "notes"


class TestWorkerRoutes:
    """Test worker status and manual ticks."""

    def test_worker_status_disabled(self, client):
        response = client.get("/v1/agent/worker")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is False
        assert data["openclaw"]["agent"] == "main"

    def test_run_once_processes_confirmed_commands(self, worker_client):
        """Test that a manual tick completes confirmed commands with the noop runner."""
        command = create(worker_client, requires_confirmation=False)
        pending = create(worker_client, title="Awaiting approval")

        response = worker_client.post("/v1/agent/worker/run-once")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["runner"] == "noop"
        assert data["last_error"] == ""
        assert data["processed_total"] >= 1

        listing = worker_client.get("/v1/agent/commands").json()["commands"]
        by_id = {item["id"]: item for item in listing}
        assert by_id[command["id"]]["status"] == "completed"
        assert by_id[command["id"]]["result"].startswith("NOOP worker processed command")
        assert by_id[pending["id"]]["status"] == "pending_confirmation"


class TestMemosRoutes:
    """Test MemOS status and search preview."""

    def test_memos_status_disabled(self, client):
        response = client.get("/v1/agent/memos")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is False
        assert data["reason"] == "MEMOS_AUTO_CONTEXT is disabled."

    def test_memos_search_disabled(self, client):
        response = client.post("/v1/agent/memos/search", json={"query": "nginx"})

        assert response.status_code == 200
        assert response.json()["error"] == "MEMOS_AUTO_CONTEXT is disabled."
        assert response.json()["context"] == ""
