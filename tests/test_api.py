"""
Tests for FastAPI application.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from taskchat.api.app import app


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


class TestRootEndpoint:
    """Tests for root endpoint."""

    def test_root_endpoint(self, client: TestClient):
        """Test that the root endpoint reports status and version."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_when_database_connected(self, client: TestClient):
        """Test health endpoint reports healthy when database is connected."""
        with patch("taskchat.db.connection.check_connection", return_value=True):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "healthy"}

    def test_health_when_database_disconnected(self, client: TestClient):
        """Test health endpoint reports degraded when database is down."""
        with patch("taskchat.db.connection.check_connection", return_value=False):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"


class TestReadinessEndpoint:
    """Tests for readiness probe endpoint."""

    def test_ready(self, client: TestClient):
        """Test that /ready returns 200 with live connection count."""
        with patch(
            "taskchat.startup.check_readiness",
            return_value=(True, {"ready": True, "database": "healthy"}),
        ):
            response = client.get("/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["ready"] is True
        assert "connections" in data

    def test_not_ready(self, client: TestClient):
        """Test that /ready returns 503 when not ready."""
        with patch(
            "taskchat.startup.check_readiness",
            return_value=(False, {"ready": False, "database": "unhealthy"}),
        ):
            response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["database"] == "unhealthy"


class TestCORS:
    """Tests for CORS middleware configuration."""

    def test_cors_allows_dev_frontend(self, client: TestClient):
        """Test that CORS allows the configured frontend origin."""
        response = client.options(
            "/",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "GET",
            },
        )

        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"
