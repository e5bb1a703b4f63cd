"""
Design Grounding - ground-truth checks for model-driven image editing.

Measures an image, shows the model those measurements, and validates every
tool call the model proposes against them before and after it runs.
"""

from design_grounding.core.agent import BaseAgent, AgentResult, TurnState
from design_grounding.core.config import GroundingConfig, load_config, get_config
from design_grounding.core.exceptions import (
    GroundingError,
    LLMClientError,
    ImageLoadError,
    ToolError,
    ContextStoreError,
)

# Models package - shared data classes and enums
from design_grounding import models

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "BaseAgent",
    "AgentResult",
    "TurnState",
    # Config
    "GroundingConfig",
    "load_config",
    "get_config",
    # Exceptions
    "GroundingError",
    "LLMClientError",
    "ImageLoadError",
    "ToolError",
    "ContextStoreError",
    # Subpackages
    "models",
]
