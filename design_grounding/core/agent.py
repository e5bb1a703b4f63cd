"""
Base agent class and related data structures.

This module defines the abstract base class for agents in the grounding
pipeline, the per-turn state machine states, and the standard result
container.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time


class TurnState(Enum):
    """
    Orchestrator turn states.

    A turn moves forward through these states once; ERRORED is terminal and
    reachable from any state.
    """
    IDLE = "idle"
    ANALYZING_IMAGE = "analyzing_image"
    CALLING_MODEL = "calling_model"
    VALIDATING_TOOL = "validating_tool"
    EXECUTING = "executing"
    SCORING = "scoring"
    PERSISTING = "persisting"
    DONE = "done"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.DONE, TurnState.ERRORED)


# Forward transitions allowed inside a single turn.
# VALIDATING_TOOL and EXECUTING alternate once per proposed tool call.
TURN_TRANSITIONS: Dict[TurnState, List[TurnState]] = {
    TurnState.IDLE: [TurnState.ANALYZING_IMAGE],
    TurnState.ANALYZING_IMAGE: [TurnState.CALLING_MODEL],
    TurnState.CALLING_MODEL: [TurnState.VALIDATING_TOOL, TurnState.SCORING],
    TurnState.VALIDATING_TOOL: [TurnState.EXECUTING, TurnState.VALIDATING_TOOL, TurnState.SCORING],
    TurnState.EXECUTING: [TurnState.VALIDATING_TOOL, TurnState.SCORING],
    TurnState.SCORING: [TurnState.PERSISTING, TurnState.DONE],
    TurnState.PERSISTING: [TurnState.DONE],
    TurnState.DONE: [],
    TurnState.ERRORED: [],
}


@dataclass
class TurnContext:
    """
    State of one in-flight turn.

    Each turn gets its own context, so turns running concurrently on the
    same agent never see each other's state.
    """
    state: TurnState = TurnState.IDLE
    history: List[TurnState] = field(default_factory=list)
    tokens_used: int = 0
    started_at: float = field(default_factory=time.time)

    def transition(self, new_state: TurnState) -> None:
        """
        Move to a new turn state.

        Raises:
            ValueError: If the transition is not allowed from the current state.
        """
        if new_state != TurnState.ERRORED and new_state not in TURN_TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid turn transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    @property
    def duration_ms(self) -> int:
        return int((time.time() - self.started_at) * 1000)


@dataclass
class AgentResult:
    """
    Standard result from agent execution.

    Agents return this structure to provide consistent result handling.
    """
    success: bool
    data: Any
    error: Optional[str] = None
    error_code: Optional[str] = None

    # Cost tracking
    cost_usd: float = 0.0

    # Performance metrics
    duration_ms: int = 0
    tokens_used: int = 0

    # Agent metadata
    agent_name: str = ""
    model_used: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for serialization."""
        return {
            "success": self.success,
            "data": self.data.to_dict() if hasattr(self.data, "to_dict") else self.data,
            "error": self.error,
            "error_code": self.error_code,
            "cost_usd": self.cost_usd,
            "duration_ms": self.duration_ms,
            "tokens_used": self.tokens_used,
            "agent_name": self.agent_name,
            "model_used": self.model_used,
        }


class BaseAgent(ABC):
    """
    Abstract base class for agents in the grounding pipeline.

    Agents hold collaborators only. Per-turn state lives on the TurnContext
    returned by _start_turn(), so one agent instance can serve overlapping
    turns.
    """

    def __init__(self, name: str, description: str):
        """
        Initialize the base agent.

        Args:
            name: Unique identifier for the agent
            description: Human-readable description of the agent's purpose
        """
        self.name = name
        self.description = description

    @abstractmethod
    async def run(self, request: Any) -> AgentResult:
        """
        Execute the agent's primary task.

        Args:
            request: Agent-specific request object

        Returns:
            AgentResult containing the outcome of the execution
        """
        pass

    def _start_turn(self) -> TurnContext:
        """Fresh state for one turn."""
        return TurnContext()

    def _create_result(
        self,
        success: bool,
        data: Any,
        turn: Optional[TurnContext] = None,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
        **kwargs,
    ) -> AgentResult:
        """
        Create a standardized AgentResult.

        Args:
            success: Whether the execution was successful
            data: Result data
            turn: The turn the result belongs to, for timing and token usage
            error: Error message if failed
            error_code: Error code if failed
            **kwargs: Additional fields for AgentResult

        Returns:
            Configured AgentResult instance
        """
        return AgentResult(
            success=success,
            data=data,
            error=error,
            error_code=error_code,
            duration_ms=turn.duration_ms if turn else 0,
            tokens_used=kwargs.get("tokens_used", turn.tokens_used if turn else 0),
            cost_usd=kwargs.get("cost_usd", 0.0),
            agent_name=self.name,
            model_used=kwargs.get("model_used", ""),
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
