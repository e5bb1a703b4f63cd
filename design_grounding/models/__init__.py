"""
Design Grounding Models Package

Shared data classes and enums for the grounding pipeline.
"""

# Image analysis (ground truth)
from .analysis import (
    DominantColor,
    PrintSize,
    ImageAnalysis,
)

# Validation (before and after execution)
from .validation import (
    ValidationResult,
    ExpectedOperation,
    VisualDifference,
    ResultValidation,
)

# Tool calls and executions
from .execution import (
    ColorTarget,
    ColorKnockoutParams,
    ExtractColorPaletteParams,
    ColorMapping,
    RecolorImageParams,
    TextureCutParams,
    BackgroundRemoverParams,
    UpscalerParams,
    PickColorParams,
    UnrecognizedToolCall,
    ToolParams,
    ToolOutput,
    ResultMetrics,
    ImageSpecsSnapshot,
    ToolExecution,
)

# Conversation context
from .context import (
    ConversationContext,
    ContextStats,
)

# Orchestration
from .orchestration import (
    ErrorCategory,
    FailureMode,
    EditingOperation,
    EditingHistory,
    UserContext,
    OrchestratorRequest,
    RetryStrategy,
    FailureAnalysis,
    PrintWarning,
    ClarificationStep,
    SuggestedWorkflow,
    ClarificationOption,
    ClarificationData,
    ToolExecutionResult,
    OrchestratorResponse,
    PlannedToolCall,
    PlanResult,
)

__all__ = [
    # Analysis
    "DominantColor",
    "PrintSize",
    "ImageAnalysis",
    # Validation
    "ValidationResult",
    "ExpectedOperation",
    "VisualDifference",
    "ResultValidation",
    # Execution
    "ColorTarget",
    "ColorKnockoutParams",
    "ExtractColorPaletteParams",
    "ColorMapping",
    "RecolorImageParams",
    "TextureCutParams",
    "BackgroundRemoverParams",
    "UpscalerParams",
    "PickColorParams",
    "UnrecognizedToolCall",
    "ToolParams",
    "ToolOutput",
    "ResultMetrics",
    "ImageSpecsSnapshot",
    "ToolExecution",
    # Context
    "ConversationContext",
    "ContextStats",
    # Orchestration
    "ErrorCategory",
    "FailureMode",
    "EditingOperation",
    "EditingHistory",
    "UserContext",
    "OrchestratorRequest",
    "RetryStrategy",
    "FailureAnalysis",
    "PrintWarning",
    "ClarificationStep",
    "SuggestedWorkflow",
    "ClarificationOption",
    "ClarificationData",
    "ToolExecutionResult",
    "OrchestratorResponse",
    "PlannedToolCall",
    "PlanResult",
]
