"""
Orchestration models.

Request and response containers for a single orchestrator turn, plus the
clarification and failure-analysis structures attached to them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from design_grounding.core.message import ChatMessage
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.validation import ResultValidation, ValidationResult


class ErrorCategory(Enum):
    """Classification of a failed model round-trip, for caller-side retry."""
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class FailureMode(Enum):
    """Why a single tool call failed."""
    VALIDATION = "validation"
    QUALITY = "quality"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    EXECUTION = "execution"


# =============================================================================
# REQUEST
# =============================================================================

@dataclass
class EditingOperation:
    """One entry of the client's undo/redo history."""
    step: int
    operation: str
    description: str
    is_current: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EditingOperation":
        return cls(
            step=int(data.get("step", 0)),
            operation=data.get("operation", ""),
            description=data.get("description", ""),
            is_current=bool(data.get("is_current", False)),
        )


@dataclass
class EditingHistory:
    """Editing history the client already applied to the image."""
    operations: List[EditingOperation] = field(default_factory=list)
    current_state_index: int = 0

    @property
    def total_operations(self) -> int:
        return len(self.operations)


@dataclass
class UserContext:
    """Optional personalization hints."""
    industry: Optional[str] = None
    expertise: Optional[str] = None
    preferences: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OrchestratorRequest:
    """
    One user turn.

    image_source may be raw bytes, a URL, a data URL or a local path.
    conversation_history, when given, replaces the stored history for
    the model call.
    """
    message: str
    image_source: Any
    conversation_id: str
    conversation_history: Optional[List[ChatMessage]] = None
    editing_history: Optional[EditingHistory] = None
    user_context: Optional[UserContext] = None


# =============================================================================
# FAILURE ANALYSIS
# =============================================================================

@dataclass
class RetryStrategy:
    """Advice for a caller that wants to retry a failed call."""
    should_retry: bool
    max_retries: int = 0
    backoff_ms: int = 0
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_retry": self.should_retry,
            "max_retries": self.max_retries,
            "backoff_ms": self.backoff_ms,
            "reason": self.reason,
        }


@dataclass
class FailureAnalysis:
    """Classified tool failure with recovery suggestions."""
    failure_mode: FailureMode
    root_cause: str
    recoverable: bool
    retry_strategy: RetryStrategy
    suggested_parameters: Optional[Dict[str, Any]] = None
    user_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failure_mode": self.failure_mode.value,
            "root_cause": self.root_cause,
            "recoverable": self.recoverable,
            "retry_strategy": self.retry_strategy.to_dict(),
            "suggested_parameters": self.suggested_parameters,
            "user_message": self.user_message,
        }


# =============================================================================
# CLARIFICATION
# =============================================================================

@dataclass
class PrintWarning:
    severity: str  # critical, warning, info
    message: str
    impact: str
    suggested_fix: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "message": self.message,
            "impact": self.impact,
            "suggested_fix": self.suggested_fix,
        }


@dataclass
class ClarificationStep:
    number: int
    description: str
    tool_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    reasoning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "description": self.description,
            "tool_name": self.tool_name,
            "parameters": self.parameters,
            "reasoning": self.reasoning,
        }


@dataclass
class SuggestedWorkflow:
    reason: str
    steps: List[ClarificationStep] = field(default_factory=list)
    benefits: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "steps": [s.to_dict() for s in self.steps],
            "benefits": list(self.benefits),
        }


@dataclass
class ClarificationOption:
    id: str  # execute-original, execute-suggested, cancel
    label: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "description": self.description}


@dataclass
class ClarificationData:
    needs_clarification: bool
    reason: str = ""
    parsed_steps: List[ClarificationStep] = field(default_factory=list)
    print_warnings: List[PrintWarning] = field(default_factory=list)
    suggested_workflow: Optional[SuggestedWorkflow] = None
    options: List[ClarificationOption] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "needs_clarification": self.needs_clarification,
            "reason": self.reason,
            "parsed_steps": [s.to_dict() for s in self.parsed_steps],
            "print_warnings": [w.to_dict() for w in self.print_warnings],
            "suggested_workflow": self.suggested_workflow.to_dict() if self.suggested_workflow else None,
            "options": [o.to_dict() for o in self.options],
        }


# =============================================================================
# RESPONSE
# =============================================================================

@dataclass
class ToolExecutionResult:
    """
    Outcome of one proposed tool call within a turn.

    A call that failed validation carries the validator's errors and was
    never executed (executed is False).
    """
    tool_name: str
    parameters: Dict[str, Any]
    validation: ValidationResult
    executed: bool = False
    execution_success: bool = False
    result_image_url: Optional[str] = None
    result_data: Optional[Dict[str, Any]] = None
    result_validation: Optional[ResultValidation] = None
    error: Optional[str] = None
    failure_analysis: Optional[FailureAnalysis] = None
    execution_time_ms: int = 0
    confidence: float = 0.0
    stored: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "tool_name": self.tool_name,
            "parameters": self.parameters,
            "validation": self.validation.to_dict(),
            "executed": self.executed,
            "execution_success": self.execution_success,
            "result_image_url": self.result_image_url,
            "result_data": self.result_data,
            "result_validation": self.result_validation.to_dict() if self.result_validation else None,
            "error": self.error,
            "failure_analysis": self.failure_analysis.to_dict() if self.failure_analysis else None,
            "execution_time_ms": self.execution_time_ms,
            "confidence": self.confidence,
            "stored": self.stored,
        }


@dataclass
class OrchestratorResponse:
    """
    Result of one turn.

    success is False only when the model round-trip itself failed; tool
    failures are reported per entry in tool_executions.
    """
    success: bool
    message: str
    conversation_id: str
    confidence: float
    tool_executions: List[ToolExecutionResult] = field(default_factory=list)
    image_analysis: Optional[ImageAnalysis] = None
    final_state: str = "done"
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def summary(self) -> str:
        """e.g. '2 of 3 requested edits applied'."""
        applied = sum(1 for t in self.tool_executions if t.execution_success)
        return f"{applied} of {len(self.tool_executions)} requested edits applied"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "message": self.message,
            "conversation_id": self.conversation_id,
            "confidence": self.confidence,
            "tool_executions": [t.to_dict() for t in self.tool_executions],
            "image_analysis": self.image_analysis.to_dict() if self.image_analysis else None,
            "final_state": self.final_state,
            "error": self.error,
            "error_category": self.error_category.value if self.error_category else None,
            "summary": self.summary,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PlannedToolCall:
    """A proposed call with its validation, returned by plan-only mode."""
    tool_name: str
    parameters: Dict[str, Any]
    validation: ValidationResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "parameters": self.parameters,
            "validation": self.validation.to_dict(),
        }


@dataclass
class PlanResult:
    """Plan-only turn output: nothing was executed or persisted."""
    success: bool
    message: str
    tool_calls: List[PlannedToolCall] = field(default_factory=list)
    image_analysis: Optional[ImageAnalysis] = None
    clarification: Optional[ClarificationData] = None
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "tool_calls": [c.to_dict() for c in self.tool_calls],
            "image_analysis": self.image_analysis.to_dict() if self.image_analysis else None,
            "clarification": self.clarification.to_dict() if self.clarification else None,
            "error": self.error,
            "error_category": self.error_category.value if self.error_category else None,
        }
