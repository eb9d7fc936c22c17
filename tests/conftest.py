"""
Pytest configuration for receipt search backend tests.

Sets up test environment and global fixtures.
"""
import os
import pytest

# Disable config validation during tests
# This allows tests to run without requiring real environment variables
os.environ["VALIDATE_CONFIG"] = "false"

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_PUBLISHABLE_KEY", "test-publishable-key")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-api-key")
os.environ.setdefault("WORKER_TOKEN", "test-worker-token")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

from tests.fakes import FakeSupabaseClient  # noqa: E402


@pytest.fixture
def supabase_client():
    """
    In-memory Supabase client for testing services.
    Tests seed rows with supabase_client.add_row(table, row).
    """
    return FakeSupabaseClient()
