"""
Request and response schemas for API endpoints.
"""
from datetime import datetime, timezone
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field


# Request building blocks
class HistoryMessage(BaseModel):
    """One prior conversation message."""
    role: Literal["user", "assistant"]
    content: str


class EditingOperationSchema(BaseModel):
    """One operation the client already applied."""
    step: int
    operation: str
    description: str = ""
    is_current: bool = False


class EditingHistorySchema(BaseModel):
    """Client-side undo/redo history."""
    operations: list[EditingOperationSchema] = Field(default_factory=list)
    current_state_index: int = 0


class UserContextSchema(BaseModel):
    """Optional user profile used in the system prompt."""
    industry: Optional[str] = None
    expertise: Optional[str] = None
    preferences: dict[str, Any] = Field(default_factory=dict)


# Edit Schemas
class EditRequest(BaseModel):
    """Request for an editing turn or a plan."""
    message: str = Field(..., min_length=1, description="User request")
    image_url: str = Field(..., description="http(s) URL or data URL of the current image")
    conversation_id: Optional[str] = Field(
        default=None, description="Conversation identifier; generated when omitted"
    )
    conversation_history: Optional[list[HistoryMessage]] = Field(
        default=None, description="Prior messages; the stored history is used when omitted"
    )
    editing_history: Optional[EditingHistorySchema] = None
    user_context: Optional[UserContextSchema] = None


class EditResponse(BaseModel):
    """Result of one editing turn."""
    success: bool
    message: str
    conversation_id: str
    confidence: float
    final_state: str
    summary: str
    tool_executions: list[dict[str, Any]] = Field(default_factory=list)
    image_analysis: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PlanResponse(BaseModel):
    """Proposed tool calls with their validations; nothing executed."""
    success: bool
    message: str
    conversation_id: str
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    image_analysis: Optional[dict[str, Any]] = None
    clarification: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_category: Optional[str] = None


class ValidateRequest(BaseModel):
    """Validate one tool call against an image without running it."""
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    image_url: str = Field(..., description="http(s) URL or data URL of the image")


class ValidateResponse(BaseModel):
    """Parameter validation result."""
    is_valid: bool
    confidence: float
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    reasoning: str = ""
    adjusted_parameters: Optional[dict[str, Any]] = None
    historical_confidence: Optional[float] = None
    image_analysis: Optional[dict[str, Any]] = None


class ConversationResponse(BaseModel):
    """Stored conversation."""
    conversation_id: str
    messages: list[dict[str, Any]] = Field(default_factory=list)
    image_analysis: Optional[dict[str, Any]] = None
    tool_executions: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    last_updated_at: datetime


class ToolListResponse(BaseModel):
    """Tool schemas offered to the model."""
    tools: list[dict[str, Any]]
    count: int


# Health & Status Schemas
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = "0.1.0"
    services: dict[str, bool]
    llm_configured: bool = False
    similarity_backend: str = "memory"


# Error Schemas
class ErrorDetail(BaseModel):
    """Error detail."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Error response."""
    error: ErrorDetail
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
