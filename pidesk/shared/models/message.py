"""Message and content block models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


class BlockKind(Enum):
    """Block kinds that accept incremental fragments."""
    TEXT = "text"
    THINKING = "thinking"


@dataclass
class TextBlock:
    text: str = ""
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ThinkingBlock:
    thinking: str = ""
    type: str = field(default="thinking", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "thinking": self.thinking}


@dataclass
class ToolCallBlock:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    # Populated when tool execution completes
    result: str | None = None
    is_error: bool | None = None
    type: str = field(default="toolCall", init=False)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }
        if self.result is not None:
            d["result"] = self.result
        if self.is_error is not None:
            d["isError"] = self.is_error
        return d


ContentBlock = Union[TextBlock, ThinkingBlock, ToolCallBlock]


@dataclass
class Message:
    role: MessageRole
    content: list[ContentBlock] = field(default_factory=list)
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    streaming: bool = False

    def find_tool_call(self, call_id: str) -> ToolCallBlock | None:
        for block in self.content:
            if isinstance(block, ToolCallBlock) and block.id == call_id:
                return block
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": [block.to_dict() for block in self.content],
            "timestamp": self.timestamp.isoformat(),
            "streaming": self.streaming,
        }
