"""
Tests for the public health endpoint.
"""

from fastapi.testclient import TestClient

from receipt_search.main import app

client = TestClient(app)


def test_health_is_public():
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "receipt-search"
    assert data["embedding_model"]
