"""
Structured exceptions for the grounding pipeline.

Every error raised by the pipeline carries a machine-readable error code
and an HTTP status so the API layer can map it without inspecting types.
"""

from typing import Any, Dict, Optional


class GroundingError(Exception):
    """
    Base exception for all grounding pipeline errors.

    Subclasses set their own error_code and http_status class attributes.
    """

    error_code: str = "GROUNDING_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class GroundingConfigError(GroundingError):
    """Raised when the grounding policy file is unreadable or malformed."""

    error_code = "CONFIG_ERROR"
    http_status = 500


class LLMClientError(GroundingError):
    """
    LLM API client errors.

    Base class for errors related to the hosted model round-trip.
    """

    error_code = "LLM_ERROR"
    http_status = 502


class LLMTimeoutError(LLMClientError):
    """Raised when the LLM API call times out."""

    error_code = "LLM_TIMEOUT"
    http_status = 504


class LLMResponseError(LLMClientError):
    """Raised when the LLM returns an invalid or unexpected response."""

    error_code = "LLM_RESPONSE_ERROR"
    http_status = 502


class LLMConfigurationError(LLMClientError):
    """Raised when the client is missing an API key or a model id."""

    error_code = "LLM_CONFIGURATION_ERROR"
    http_status = 500


class RateLimitError(LLMClientError):
    """
    Rate limit exceeded error.

    Includes retry-after information when the provider sends it.
    """

    error_code = "RATE_LIMIT_ERROR"
    http_status = 429

    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        if retry_after:
            self.details["retry_after"] = retry_after


class ImageLoadError(GroundingError):
    """Raised when an image source cannot be fetched or decoded."""

    error_code = "IMAGE_LOAD_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        source_kind: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.source_kind = source_kind
        if source_kind:
            self.details["source_kind"] = source_kind


class ToolError(GroundingError):
    """
    Tool errors.

    Raised when an image tool cannot be resolved, validated or run.
    """

    error_code = "TOOL_ERROR"
    http_status = 500


class ToolNotFoundError(ToolError):
    """Raised when a requested tool is not found in the registry."""

    error_code = "TOOL_NOT_FOUND"
    http_status = 404


class ToolValidationError(ToolError):
    """Raised when tool input cannot be decoded into typed parameters."""

    error_code = "TOOL_VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        errors: Optional[list] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.errors = errors or []
        self.details["errors"] = self.errors


class ToolExecutionError(ToolError):
    """Raised by a tool executor when the operation itself fails."""

    error_code = "TOOL_EXECUTION_ERROR"
    http_status = 502


class ContextStoreError(GroundingError):
    """
    Context store errors.

    Raised for conversation storage failures that callers must see.
    """

    error_code = "CONTEXT_STORE_ERROR"
    http_status = 500


class SimilarityBackendError(ContextStoreError):
    """Raised by a similarity backend when its storage is unreachable."""

    error_code = "SIMILARITY_BACKEND_ERROR"
    http_status = 503
