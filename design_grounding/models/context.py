"""
Conversation context models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from design_grounding.core.message import ChatMessage
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.execution import ToolExecution


@dataclass
class ConversationContext:
    """
    Stored state of one conversation, keyed by conversation_id.

    Created on the first turn and appended to on every later turn.
    """
    conversation_id: str
    messages: List[ChatMessage] = field(default_factory=list)
    image_analysis: Optional[ImageAnalysis] = None
    tool_executions: List[ToolExecution] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_updated_at: datetime = field(default_factory=datetime.utcnow)

    def recent_messages(self, limit: int) -> List[ChatMessage]:
        """Most recent messages, oldest first."""
        if limit <= 0:
            return []
        return self.messages[-limit:]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "conversation_id": self.conversation_id,
            "messages": [m.to_dict() for m in self.messages],
            "image_analysis": self.image_analysis.to_dict() if self.image_analysis else None,
            "tool_executions": [e.to_dict() for e in self.tool_executions],
            "created_at": self.created_at.isoformat(),
            "last_updated_at": self.last_updated_at.isoformat(),
        }


@dataclass
class ContextStats:
    """Counts reported by the context store."""
    conversations: int = 0
    tool_executions: int = 0
    successful_executions: int = 0
    similarity_backend: str = "memory"
    similarity_available: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversations": self.conversations,
            "tool_executions": self.tool_executions,
            "successful_executions": self.successful_executions,
            "similarity_backend": self.similarity_backend,
            "similarity_available": self.similarity_available,
        }
