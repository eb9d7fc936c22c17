"""
Tests for the /queue endpoints (database webhook and worker operations).
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from receipt_search.main import app
from receipt_search.utils.constants import QUEUE_TABLE
from tests.fakes import FakeSupabaseClient

WORKER_HEADERS = {"X-Worker-Token": "test-worker-token"}
WEBHOOK_HEADERS = {"X-Webhook-Secret": "test-webhook-secret"}


@pytest.fixture
def client():
    """Create test client for FastAPI app."""
    return TestClient(app)


@pytest.fixture
def db():
    fake = FakeSupabaseClient()
    with patch("receipt_search.routes.queue.get_service_role_client", return_value=fake):
        yield fake


class TestWebhook:

    def test_insert_event_enqueues_high_priority_task(self, client, db):
        response = client.post(
            "/queue/webhook",
            headers=WEBHOOK_HEADERS,
            json={"type": "INSERT", "table": "receipts", "schema": "public", "record": {"id": "r-1"}},
        )

        assert response.status_code == 202
        assert response.json()["queued"] is True
        task = db.rows(QUEUE_TABLE)[0]
        assert task["source_id"] == "r-1"
        assert task["priority"] == "high"
        assert task["metadata"]["schema"] == "public"

    def test_delete_event_uses_old_record(self, client, db):
        response = client.post(
            "/queue/webhook",
            headers=WEBHOOK_HEADERS,
            json={"type": "DELETE", "table": "claims", "record": None, "old_record": {"id": "c-1"}},
        )

        assert response.status_code == 202
        task = db.rows(QUEUE_TABLE)[0]
        assert task["source_type"] == "claim"
        assert task["operation"] == "delete"
        assert task["priority"] == "low"

    def test_queue_failure_still_acknowledges(self, client, db):
        db.errors[QUEUE_TABLE] = RuntimeError("database unavailable")

        response = client.post(
            "/queue/webhook",
            headers=WEBHOOK_HEADERS,
            json={"type": "UPDATE", "table": "receipts", "record": {"id": "r-1"}},
        )

        assert response.status_code == 202
        assert response.json() == {"queued": False, "task_id": None}

    def test_missing_database_client_still_acknowledges(self, client):
        with patch(
            "receipt_search.routes.queue.get_service_role_client",
            side_effect=RuntimeError("SUPABASE_SECRET_KEY is not set"),
        ):
            response = client.post(
                "/queue/webhook",
                headers=WEBHOOK_HEADERS,
                json={"type": "INSERT", "table": "receipts", "record": {"id": "r-1"}},
            )

        assert response.status_code == 202
        assert response.json() == {"queued": False, "task_id": None}

    def test_wrong_secret_returns_401(self, client, db):
        response = client.post(
            "/queue/webhook",
            headers={"X-Webhook-Secret": "nope"},
            json={"type": "INSERT", "table": "receipts", "record": {"id": "r-1"}},
        )

        assert response.status_code == 401
        assert db.rows(QUEUE_TABLE) == []


class TestWorkerEndpoints:

    def test_worker_token_required(self, client, db):
        assert client.get("/queue/pending").status_code == 401

    def test_pending_claim_and_complete(self, client, db):
        db.add_row(QUEUE_TABLE, {
            "source_type": "receipt", "source_id": "r-low", "operation": "delete",
            "priority": "low", "status": "pending", "retry_count": 0, "max_retries": 3,
        })
        db.add_row(QUEUE_TABLE, {
            "source_type": "receipt", "source_id": "r-high", "operation": "insert",
            "priority": "high", "status": "pending", "retry_count": 0, "max_retries": 3,
        })

        pending = client.get("/queue/pending", headers=WORKER_HEADERS)
        assert pending.status_code == 200
        assert [task["source_id"] for task in pending.json()["tasks"]] == ["r-high", "r-low"]

        claimed = client.post("/queue/claim", headers=WORKER_HEADERS, json={"worker_id": "w-1", "limit": 1})
        assert claimed.status_code == 200
        task = claimed.json()["tasks"][0]
        assert task["source_id"] == "r-high"
        assert task["status"] == "processing"
        assert task["worker_id"] == "w-1"

        completed = client.patch(
            f"/queue/{task['id']}/status", headers=WORKER_HEADERS, json={"status": "completed"}
        )
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"
        assert completed.json()["processed_at"] is not None

    def test_unknown_task_returns_404(self, client, db):
        response = client.patch("/queue/missing/status", headers=WORKER_HEADERS, json={"status": "failed"})

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_invalid_priority_returns_422(self, client, db):
        response = client.get("/queue/pending", headers=WORKER_HEADERS, params={"priority": "urgent"})
        assert response.status_code == 422
