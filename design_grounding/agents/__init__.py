"""
Agents for the grounding pipeline.

- EditOrchestratorAgent: runs one grounded image-editing turn
"""
from design_grounding.agents.edit_orchestrator_agent import (
    EditOrchestratorAgent,
    classify_llm_error,
)

__all__ = ["EditOrchestratorAgent", "classify_llm_error"]
