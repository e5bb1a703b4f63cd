"""
Health Check Tests
Tests for health check endpoints and service dependency checks
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock, MagicMock

from src.api.main import app
from src.utils.health_check import (
    check_openrouter_api,
    check_grounding_policy,
    check_tool_registry,
    check_similarity_backend,
    perform_health_checks,
)
from design_grounding.core.exceptions import SimilarityBackendError
from design_grounding.services.context_store_service import ContextStoreService
from design_grounding.services.similarity_backends import NullSimilarityBackend


@pytest.fixture
def client():
    """Create test client with the application lifespan."""
    with TestClient(app) as test_client:
        yield test_client


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_endpoint_exists(self, client):
        """Test that health endpoint is accessible."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_endpoint_structure(self, client):
        """Test that health endpoint has correct structure."""
        response = client.get("/health")
        data = response.json()

        assert data["status"] in ["healthy", "degraded"]
        assert isinstance(data["services"], dict)
        assert set(data["services"]) == {
            "openrouter_api",
            "grounding_policy",
            "tool_registry",
            "similarity_backend",
        }
        assert data["similarity_backend"] == "memory"

    def test_health_without_orchestrator(self):
        """Without the lifespan the similarity check fails."""
        data = TestClient(app).get("/health").json()
        assert data["status"] == "degraded"
        assert data["services"]["similarity_backend"] is False
        assert data["llm_configured"] is False

    def test_metrics_endpoint(self, client):
        """Test that metrics are exposed in Prometheus format."""
        client.get("/edit/tools")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert 'grounding_http_requests_total{method="GET",route="/edit/tools",status="200"}' in response.text

    def test_metrics_label_uses_route_template(self, client):
        """Path parameters are folded into the template, prefix included."""
        client.get("/edit/conversations/conv-1")
        client.get("/edit/conversations/conv-2")
        client.get("/no-such-page")
        text = client.get("/metrics").text
        assert 'route="/edit/conversations/{conversation_id}"' in text
        assert "conv-1" not in text
        assert 'route="unmatched",status="404"' in text

    def test_request_id_echoed(self, client):
        """The X-Request-ID header is passed through to the response."""
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestOpenRouterHealthCheck:
    """Tests for the OpenRouter key check."""

    @pytest.mark.asyncio
    async def test_check_with_valid_key(self):
        """Test health check with a configured API key."""
        with patch("src.utils.health_check.settings") as mock_settings:
            mock_settings.openrouter_api_key = "sk-or-test-key-12345"
            result = await check_openrouter_api()

        assert result["status"] is True
        assert result["message"] == "API key configured"

    @pytest.mark.asyncio
    async def test_check_without_key(self):
        with patch("src.utils.health_check.settings") as mock_settings:
            mock_settings.openrouter_api_key = ""
            result = await check_openrouter_api()

        assert result["status"] is False
        assert "not configured" in result["error"]

    @pytest.mark.asyncio
    async def test_check_with_invalid_key(self):
        with patch("src.utils.health_check.settings") as mock_settings:
            mock_settings.openrouter_api_key = "short"
            result = await check_openrouter_api()

        assert result["status"] is False
        assert "appears invalid" in result["error"]


class TestPipelineHealthChecks:
    """Tests for policy, registry and similarity backend checks."""

    @pytest.mark.asyncio
    async def test_grounding_policy(self):
        result = await check_grounding_policy()
        assert result["status"] is True
        assert result["message"] == "Execution gate 70"

    @pytest.mark.asyncio
    async def test_tool_registry(self):
        result = await check_tool_registry()
        assert result == {"status": True, "message": "7 tools registered"}

    @pytest.mark.asyncio
    async def test_similarity_backend_memory(self):
        result = await check_similarity_backend(ContextStoreService())
        assert result["status"] is True
        assert result["message"] == "memory: 0/0 successful executions"

    @pytest.mark.asyncio
    async def test_similarity_backend_degraded(self):
        """A degraded store still reports healthy."""
        result = await check_similarity_backend(ContextStoreService(backend=NullSimilarityBackend()))
        assert result["status"] is True
        assert "degraded mode" in result["message"]

    @pytest.mark.asyncio
    async def test_similarity_backend_failure(self):
        store = MagicMock()
        store.degraded = False
        store.backend.counts = AsyncMock(side_effect=SimilarityBackendError("connection refused"))

        result = await check_similarity_backend(store)

        assert result["status"] is False
        assert "connection refused" in result["error"]

    @pytest.mark.asyncio
    async def test_perform_health_checks(self):
        checks = await perform_health_checks(None)
        assert checks["similarity_backend"]["status"] is False
        assert checks["tool_registry"]["status"] is True
