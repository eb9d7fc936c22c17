"""
Tests for the /maintenance endpoints (admin only).
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from receipt_search.auth.dependencies import AuthenticatedUser, get_authenticated_user
from receipt_search.main import app
from receipt_search.utils.constants import EMBEDDINGS_TABLE, QUEUE_TABLE
from tests.fakes import FakeSupabaseClient, embedding_row


@pytest.fixture
def client():
    """Create test client for FastAPI app."""
    return TestClient(app)


@pytest.fixture
def db():
    fake = FakeSupabaseClient()
    fake.rpc_handlers["has_role"] = lambda params: params["_user_id"] == "admin-1"
    with patch("receipt_search.routes.maintenance.get_service_role_client", return_value=fake), \
            patch("receipt_search.auth.dependencies.get_service_role_client", return_value=fake):
        yield fake


def login_as(user_id):
    async def mock_user():
        return AuthenticatedUser(user_id=user_id, access_token="test-token")

    app.dependency_overrides[get_authenticated_user] = mock_user


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


class TestAdminGate:

    def test_non_admin_gets_403(self, client, db):
        login_as("user-1")

        response = client.get("/maintenance/queue/stats")

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "forbidden"

    def test_missing_token_gets_401(self, client, db):
        assert client.get("/maintenance/queue/stats").status_code == 401


class TestMaintenanceEndpoints:

    def test_content_health_and_repair(self, client, db):
        login_as("admin-1")
        db.add_row("receipts", {"id": "r-1", "merchant": "Acme Store"})
        db.add_row(EMBEDDINGS_TABLE, embedding_row("r-1", "", content_type="merchant"))
        db.add_row(EMBEDDINGS_TABLE, embedding_row("r-2", "Healthy"))

        health = client.get("/maintenance/content-health")
        assert health.status_code == 200
        assert health.json()["rows"][0]["empty_content"] == 1

        repair = client.post("/maintenance/repair")
        assert repair.status_code == 200
        assert repair.json()["fixed_count"] == 1
        assert len(db.rows(QUEUE_TABLE)) == 1

    def test_queue_operations(self, client, db):
        login_as("admin-1")
        db.add_row(QUEUE_TABLE, {
            "source_type": "receipt", "source_id": "r-1", "operation": "update", "priority": "medium",
            "status": "failed", "retry_count": 3, "max_retries": 3, "error_message": "boom",
        })

        stats = client.get("/maintenance/queue/stats")
        assert stats.json()["total_dead"] == 1

        dead = client.get("/maintenance/queue/dead")
        assert dead.json()["count"] == 1

        requeued = client.post("/maintenance/queue/requeue")
        assert requeued.json() == {"operation": "requeue_failed", "affected": 1}
        assert db.rows(QUEUE_TABLE)[0]["status"] == "pending"

    def test_metrics_summary(self, client, db):
        login_as("admin-1")

        response = client.get("/maintenance/metrics", params={"hours": 1})

        assert response.status_code == 200
        assert response.json()["total_attempts"] == 0
