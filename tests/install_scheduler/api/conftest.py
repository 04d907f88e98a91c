"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch
import os

from install_scheduler.api.main import create_app


# --- Test API Key Fixture ---
@pytest.fixture
def test_api_key():
    """Valid API key for testing."""
    return "test-api-key"

# --- Mock Settings Fixture ---
@pytest.fixture
def mock_settings(test_api_key):
    """Mock settings for API tests."""
    return {
        "api_keys": [test_api_key]
    }

# --- Test Client Fixture ---
@pytest.fixture
def client(mock_settings, test_api_key):
    """
    Create a FastAPI TestClient with the API key settings mocked.
    """
    # Set environment variable for tests (for settings dependency)
    os.environ["SCHEDULER_API_KEYS"] = test_api_key

    with patch("install_scheduler.api.deps.get_settings", return_value=mock_settings):
        app = create_app()

        with TestClient(app) as test_client:
            yield test_client

        # Clean up dependency overrides after tests
        app.dependency_overrides = {}


@pytest.fixture
def auth_headers(test_api_key):
    return {"api-key": test_api_key}


# --- Payload Fixtures ---

@pytest.fixture
def job_payload():
    """A geocoded installation in Manhattan."""
    def _job(job_id="job-1", **overrides):
        payload = {
            "id": job_id,
            "customer_name": "Jane Customer",
            "address": {
                "street": "350 5th Ave",
                "city": "New York",
                "state": "NY",
                "zip_code": "10118",
                "coordinates": {"lat": 40.7484, "lng": -73.9857}
            },
            "scheduled_date": "2025-06-02",
            "duration": 120,
            "priority": "high"
        }
        payload.update(overrides)
        return payload
    return _job


@pytest.fixture
def member_payload():
    """A technician based in Manhattan, available all of June 2025."""
    def _member(member_id="lead-1", role="lead", **overrides):
        payload = {
            "id": member_id,
            "first_name": "Sam",
            "last_name": "Tech",
            "role": role,
            "region": "North",
            "coordinates": {"lat": 40.7128, "lng": -74.0060},
            "availability": [
                {"start_date": "2025-06-01", "end_date": "2025-06-30"}
            ]
        }
        payload.update(overrides)
        return payload
    return _member
