"""
Pytest configuration and shared fixtures for memorial quota tests.

This module provides common fixtures used across all test files:
- Test client setup
- An in-memory datastore wired into the usage service
- Mock configurations for external services
"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest

# Environment setup before any imports
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
for _var in (
    "SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_URL",
    "SUPABASE_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_SERVICE_KEY",
    "SENTRY_DSN",
):
    os.environ.pop(_var, None)

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

TEST_USER_ID = "user-0123456789abcdef"


@pytest.fixture
def client():
    """FastAPI test client fixture."""
    from fastapi.testclient import TestClient
    from server import app

    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Headers carrying the caller identity set by the auth gateway."""
    return {"X-User-ID": TEST_USER_ID}


@pytest.fixture
def memory_store():
    """Empty in-memory datastore."""
    from memorial_quota.usage.datastore import InMemoryUsageStore

    return InMemoryUsageStore()


@pytest.fixture
def usage_service(memory_store):
    """Usage service backed by the in-memory store, installed as the singleton."""
    from memorial_quota.usage.datastore import DatastoreAvailability
    from memorial_quota.usage.quota_service import UsageLimitService, set_usage_service

    service = UsageLimitService(memory_store, DatastoreAvailability.present())
    set_usage_service(service)
    yield service
    set_usage_service(None)


@pytest.fixture
def mock_sentry():
    """Mock Sentry SDK."""
    with patch("sentry_sdk.capture_exception") as capture_mock, \
         patch("sentry_sdk.get_client") as client_mock:
        mock_client = MagicMock()
        mock_client.is_active.return_value = True
        client_mock.return_value = mock_client
        yield {"capture": capture_mock, "client": client_mock}


# Test environment cleanup
@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables and the usage service singleton after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)

    from memorial_quota.usage.quota_service import set_usage_service

    set_usage_service(None)
