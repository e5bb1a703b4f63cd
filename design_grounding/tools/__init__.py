"""
Image tools the model may call.

This module provides the tool schemas, the registry that exposes them to
the model, and the executors that apply them to images.
"""

from design_grounding.tools.base import ImageTool, ToolParameter, ToolSchema, ParameterType
from design_grounding.tools.registry import ToolRegistry, get_registry, reset_registry
from design_grounding.tools.image_tools import (
    COLOR_KNOCKOUT,
    EXTRACT_COLOR_PALETTE,
    RECOLOR_IMAGE,
    TEXTURE_CUT,
    BACKGROUND_REMOVER,
    UPSCALER,
    PICK_COLOR_AT_POSITION,
    build_image_tools,
    decode_tool_call,
)
from design_grounding.tools.executor import ToolExecutor, PillowToolExecutor

__all__ = [
    # Base classes
    "ImageTool",
    "ToolParameter",
    "ToolSchema",
    "ParameterType",
    # Registry
    "ToolRegistry",
    "get_registry",
    "reset_registry",
    # Catalogue
    "COLOR_KNOCKOUT",
    "EXTRACT_COLOR_PALETTE",
    "RECOLOR_IMAGE",
    "TEXTURE_CUT",
    "BACKGROUND_REMOVER",
    "UPSCALER",
    "PICK_COLOR_AT_POSITION",
    "build_image_tools",
    "decode_tool_call",
    # Executors
    "ToolExecutor",
    "PillowToolExecutor",
]
