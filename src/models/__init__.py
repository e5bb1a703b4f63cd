"""Data models and schemas."""
from .schemas import (
    EditRequest,
    EditResponse,
    PlanResponse,
    ValidateRequest,
    ValidateResponse,
    ConversationResponse,
    ToolListResponse,
    HealthResponse,
    ErrorDetail,
    ErrorResponse,
)

__all__ = [
    "EditRequest",
    "EditResponse",
    "PlanResponse",
    "ValidateRequest",
    "ValidateResponse",
    "ConversationResponse",
    "ToolListResponse",
    "HealthResponse",
    "ErrorDetail",
    "ErrorResponse",
]
