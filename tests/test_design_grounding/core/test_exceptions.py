"""
Unit tests for design_grounding.core.exceptions module.
"""

import pytest

from design_grounding.core.exceptions import (
    GroundingError,
    GroundingConfigError,
    LLMClientError,
    LLMTimeoutError,
    LLMResponseError,
    LLMConfigurationError,
    RateLimitError,
    ImageLoadError,
    ToolError,
    ToolNotFoundError,
    ToolValidationError,
    ToolExecutionError,
    ContextStoreError,
    SimilarityBackendError,
)


class TestGroundingError:
    """Tests for base GroundingError."""

    def test_basic_error(self):
        """Test basic error creation."""
        error = GroundingError("Something went wrong")
        assert str(error) == "[GROUNDING_ERROR] Something went wrong"
        assert error.message == "Something went wrong"
        assert error.error_code == "GROUNDING_ERROR"
        assert error.http_status == 500

    def test_custom_error_code(self):
        """Test error with custom code."""
        error = GroundingError("Test error", error_code="CUSTOM_ERROR")
        assert error.error_code == "CUSTOM_ERROR"

    def test_to_dict(self):
        """Test error serialization."""
        error = GroundingError("Test error", error_code="TEST", details={"extra": "info"})
        data = error.to_dict()
        assert data["error"] is True
        assert data["error_code"] == "TEST"
        assert data["message"] == "Test error"
        assert data["details"]["extra"] == "info"


class TestSpecificErrors:
    """Tests for specific error types."""

    @pytest.mark.parametrize(
        "cls,code,status",
        [
            (GroundingConfigError, "CONFIG_ERROR", 500),
            (LLMClientError, "LLM_ERROR", 502),
            (LLMTimeoutError, "LLM_TIMEOUT", 504),
            (LLMResponseError, "LLM_RESPONSE_ERROR", 502),
            (LLMConfigurationError, "LLM_CONFIGURATION_ERROR", 500),
            (ToolError, "TOOL_ERROR", 500),
            (ToolNotFoundError, "TOOL_NOT_FOUND", 404),
            (ToolExecutionError, "TOOL_EXECUTION_ERROR", 502),
            (ContextStoreError, "CONTEXT_STORE_ERROR", 500),
            (SimilarityBackendError, "SIMILARITY_BACKEND_ERROR", 503),
        ],
    )
    def test_codes_and_statuses(self, cls, code, status):
        """Each error carries its own code and HTTP status."""
        error = cls("failure")
        assert error.error_code == code
        assert error.http_status == status
        assert isinstance(error, GroundingError)

    def test_rate_limit_error(self):
        """Test RateLimitError with retry_after."""
        error = RateLimitError("Rate limited", retry_after=60)
        assert error.error_code == "RATE_LIMIT_ERROR"
        assert error.http_status == 429
        assert error.retry_after == 60
        assert error.details["retry_after"] == 60
        assert isinstance(error, LLMClientError)

    def test_image_load_error(self):
        """Test ImageLoadError records the source kind."""
        error = ImageLoadError("Cannot decode", source_kind="data_url")
        assert error.http_status == 400
        assert error.source_kind == "data_url"
        assert error.details["source_kind"] == "data_url"

    def test_tool_validation_error(self):
        """Test ToolValidationError keeps the individual errors."""
        error = ToolValidationError("Invalid input", errors=["bad hex"])
        assert error.error_code == "TOOL_VALIDATION_ERROR"
        assert error.errors == ["bad hex"]
        assert error.details["errors"] == ["bad hex"]

    def test_hierarchy(self):
        """Timeouts are client errors, backend errors are store errors."""
        assert issubclass(LLMTimeoutError, LLMClientError)
        assert issubclass(ToolNotFoundError, ToolError)
        assert issubclass(SimilarityBackendError, ContextStoreError)
