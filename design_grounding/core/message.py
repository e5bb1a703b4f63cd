"""
Message definitions for orchestrator conversations.

This module provides the data structures for conversation history and for
the tool calls the model proposes, including decoding of their JSON
arguments.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import json


class MessageRole(Enum):
    """Role of the message sender."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """
    A tool call proposed by the model.

    Arguments arrive as a JSON string. When that string does not decode to a
    JSON object, arguments is left empty and parse_error says why, so the
    validator can report it as a schema error on this call alone.
    """
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    parse_error: Optional[str] = None

    @property
    def is_malformed(self) -> bool:
        return self.parse_error is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }
        if self.parse_error:
            result["parse_error"] = self.parse_error
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        """Create from dictionary."""
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            arguments=data.get("arguments", {}) or {},
            parse_error=data.get("parse_error"),
        )

    @classmethod
    def from_llm_format(cls, data: Dict[str, Any]) -> "ToolCall":
        """
        Decode an OpenAI-style tool call ({id, function: {name, arguments}}).

        Never raises: malformed payloads are recorded in parse_error.
        """
        if not isinstance(data, dict):
            return cls(id="", name="", parse_error="Tool call payload is not an object")

        function = data.get("function") or {}
        if not isinstance(function, dict):
            return cls(
                id=str(data.get("id", "")),
                name="",
                parse_error="Tool call 'function' field is not an object",
            )

        name = function.get("name") or ""
        raw = function.get("arguments", "{}")
        call_id = str(data.get("id", ""))

        if isinstance(raw, dict):
            return cls(id=call_id, name=name, arguments=raw)

        if raw is None or raw == "":
            return cls(id=call_id, name=name, arguments={})

        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError) as e:
            return cls(
                id=call_id,
                name=name,
                parse_error=f"Tool arguments are not valid JSON: {e}",
            )

        if not isinstance(decoded, dict):
            return cls(
                id=call_id,
                name=name,
                parse_error=f"Tool arguments must be a JSON object, got {type(decoded).__name__}",
            )

        return cls(id=call_id, name=name, arguments=decoded)


@dataclass
class ChatMessage:
    """
    A single message in a stored conversation.

    Only user and assistant turns are stored; the system prompt is rebuilt
    from ground truth on every turn.
    """
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: Dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.image_url:
            result["image_url"] = self.image_url
        return result

    def to_llm_format(self) -> Dict[str, Any]:
        """Convert to the OpenAI-compatible message shape."""
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        """Create from dictionary."""
        timestamp = datetime.utcnow()
        if "timestamp" in data and data["timestamp"]:
            if isinstance(data["timestamp"], str):
                timestamp = datetime.fromisoformat(data["timestamp"])
            else:
                timestamp = data["timestamp"]

        return cls(
            role=MessageRole(data["role"]),
            content=data.get("content", ""),
            timestamp=timestamp,
            image_url=data.get("image_url"),
        )

    @classmethod
    def user(cls, content: str, **kwargs) -> "ChatMessage":
        """Create a user message."""
        return cls(role=MessageRole.USER, content=content, **kwargs)

    @classmethod
    def assistant(cls, content: str, **kwargs) -> "ChatMessage":
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT, content=content, **kwargs)


ContentPart = Dict[str, Any]


def text_part(text: str) -> ContentPart:
    return {"type": "text", "text": text}


def image_part(url: str) -> ContentPart:
    return {"type": "image_url", "image_url": {"url": url}}


def build_llm_messages(
    system_prompt: str,
    history: List[ChatMessage],
    user_message: str,
    image_urls: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """
    Assemble the request messages for one model round-trip.

    Args:
        system_prompt: Ground-truth system prompt
        history: Prior conversation messages, oldest first
        user_message: Current user request
        image_urls: Images attached to the current request (URL or data URL)

    Returns:
        Messages in OpenAI format
    """
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    messages.extend(m.to_llm_format() for m in history)

    content: Union[str, List[ContentPart]]
    if image_urls:
        content = [image_part(url) for url in image_urls]
        content.append(text_part(user_message))
    else:
        content = user_message

    messages.append({"role": "user", "content": content})
    return messages
