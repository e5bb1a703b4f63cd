"""
Core components for the design grounding pipeline.

This module provides the foundational classes and utilities:
- BaseAgent, TurnContext: Abstract base class for agents and per-turn state
- TurnState: Orchestrator state machine states
- ToolCall, ChatMessage: Conversation and tool call messages
- Config: Grounding policy loading and management
- Exceptions: Structured error handling
- LLMClient: OpenRouter chat completions client
"""

from design_grounding.core.agent import (
    BaseAgent,
    AgentResult,
    TurnContext,
    TurnState,
    TURN_TRANSITIONS,
)
from design_grounding.core.message import (
    MessageRole,
    ToolCall,
    ChatMessage,
    build_llm_messages,
)
from design_grounding.core.config import (
    GroundingConfig,
    ModelProfile,
    load_config,
    get_config,
    reset_config,
)
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
from design_grounding.core.llm_client import LLMClient, LLMResponse

__all__ = [
    # Agent
    "BaseAgent",
    "AgentResult",
    "TurnContext",
    "TurnState",
    "TURN_TRANSITIONS",
    # Message
    "MessageRole",
    "ToolCall",
    "ChatMessage",
    "build_llm_messages",
    # Config
    "GroundingConfig",
    "ModelProfile",
    "load_config",
    "get_config",
    "reset_config",
    # Exceptions
    "GroundingError",
    "GroundingConfigError",
    "LLMClientError",
    "LLMTimeoutError",
    "LLMResponseError",
    "LLMConfigurationError",
    "RateLimitError",
    "ImageLoadError",
    "ToolError",
    "ToolNotFoundError",
    "ToolValidationError",
    "ToolExecutionError",
    "ContextStoreError",
    "SimilarityBackendError",
    # LLM Client
    "LLMClient",
    "LLMResponse",
]
