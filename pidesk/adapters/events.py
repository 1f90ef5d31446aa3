"""Agent event types delivered by the transport.

Each transport envelope is ``{"sessionId": ..., "event": {...}}``; the
event dict is parsed into a typed dataclass for safe consumption by the
reconciler. Wire keys are camelCase, dataclass fields snake_case.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from typing import Any

from pidesk.engine.errors import MalformedEnvelopeError

logger = logging.getLogger(__name__)


@dataclass
class AgentEvent:
    """Base event from the agent runtime."""
    event_type: str = ""


@dataclass
class AgentStart(AgentEvent):
    event_type: str = "agent_start"


@dataclass
class AgentEnd(AgentEvent):
    event_type: str = "agent_end"
    messages: list = field(default_factory=list)


@dataclass
class TurnStart(AgentEvent):
    event_type: str = "turn_start"
    turn_index: int = 0
    timestamp: float | None = None


@dataclass
class TurnEnd(AgentEvent):
    event_type: str = "turn_end"
    turn_index: int = 0
    message: dict = field(default_factory=dict)
    tool_results: list = field(default_factory=list)


@dataclass
class MessageStart(AgentEvent):
    event_type: str = "message_start"
    message: dict = field(default_factory=dict)


@dataclass
class AssistantMessageEvent:
    """Sub-event of ``message_update`` describing one content-block change."""
    kind: str = ""
    content_index: int | None = None
    delta: str = ""
    content: str | None = None
    thinking: str | None = None
    tool_call: dict | None = None


@dataclass
class MessageUpdate(AgentEvent):
    event_type: str = "message_update"
    message: dict = field(default_factory=dict)
    assistant_message_event: AssistantMessageEvent = field(
        default_factory=AssistantMessageEvent
    )


@dataclass
class MessageEnd(AgentEvent):
    event_type: str = "message_end"
    message: dict = field(default_factory=dict)


@dataclass
class ToolExecutionStart(AgentEvent):
    event_type: str = "tool_execution_start"
    tool_call_id: str = ""
    tool_name: str = ""
    args: dict = field(default_factory=dict)


@dataclass
class ToolExecutionUpdate(AgentEvent):
    event_type: str = "tool_execution_update"
    tool_call_id: str = ""
    tool_name: str = ""
    args: dict = field(default_factory=dict)
    partial_result: Any = None


@dataclass
class ToolExecutionEnd(AgentEvent):
    event_type: str = "tool_execution_end"
    tool_call_id: str = ""
    tool_name: str = ""
    result: Any = None
    is_error: bool = False


@dataclass
class AutoCompactionStart(AgentEvent):
    event_type: str = "auto_compaction_start"
    reason: str = ""


@dataclass
class AutoCompactionEnd(AgentEvent):
    event_type: str = "auto_compaction_end"
    aborted: bool = False
    will_retry: bool = False
    error_message: str | None = None


@dataclass
class AutoRetryStart(AgentEvent):
    event_type: str = "auto_retry_start"
    attempt: int = 0
    max_attempts: int = 0
    delay_ms: int = 0
    error_message: str = ""


@dataclass
class AutoRetryEnd(AgentEvent):
    event_type: str = "auto_retry_end"
    success: bool = False
    attempt: int = 0
    final_error: str | None = None


@dataclass
class EventEnvelope:
    """One transport delivery: an event addressed to a session."""
    session_id: str
    event: AgentEvent


# Map of event type strings to dataclass constructors
_EVENT_MAP: dict[str, type[AgentEvent]] = {
    "agent_start": AgentStart,
    "agent_end": AgentEnd,
    "turn_start": TurnStart,
    "turn_end": TurnEnd,
    "message_start": MessageStart,
    "message_update": MessageUpdate,
    "message_end": MessageEnd,
    "tool_execution_start": ToolExecutionStart,
    "tool_execution_update": ToolExecutionUpdate,
    "tool_execution_end": ToolExecutionEnd,
    "auto_compaction_start": AutoCompactionStart,
    "auto_compaction_end": AutoCompactionEnd,
    "auto_retry_start": AutoRetryStart,
    "auto_retry_end": AutoRetryEnd,
}

# camelCase wire key -> dataclass field
_WIRE_KEYS: dict[str, str] = {
    "turnIndex": "turn_index",
    "toolResults": "tool_results",
    "toolCallId": "tool_call_id",
    "toolName": "tool_name",
    "partialResult": "partial_result",
    "isError": "is_error",
    "willRetry": "will_retry",
    "errorMessage": "error_message",
    "maxAttempts": "max_attempts",
    "delayMs": "delay_ms",
    "finalError": "final_error",
}


def _parse_assistant_event(data: Any) -> AssistantMessageEvent:
    if not isinstance(data, dict):
        return AssistantMessageEvent()
    index = data.get("contentIndex")
    # bool is an int subclass; neither it nor a negative index addresses a block
    if not isinstance(index, int) or isinstance(index, bool) or index < 0:
        index = None
    delta = data.get("delta")
    content = data.get("content")
    thinking = data.get("thinking")
    tool_call = data.get("toolCall")
    return AssistantMessageEvent(
        kind=data.get("type") if isinstance(data.get("type"), str) else "",
        content_index=index,
        delta=delta if isinstance(delta, str) else "",
        content=content if isinstance(content, str) else None,
        thinking=thinking if isinstance(thinking, str) else None,
        tool_call=tool_call if isinstance(tool_call, dict) else None,
    )


def dict_to_event(data: dict[str, Any]) -> AgentEvent:
    """Convert a wire event dict to a typed event dataclass.

    Unknown event types become a bare ``AgentEvent`` carrying the type
    string; unknown keys are ignored.
    """
    event_type = data.get("type", "")
    if not isinstance(event_type, str):
        event_type = ""
    cls = _EVENT_MAP.get(event_type)
    if cls is None:
        return AgentEvent(event_type=event_type)

    valid_fields = {f.name: f for f in fields(cls)}
    filtered: dict[str, Any] = {}
    for key, value in data.items():
        name = _WIRE_KEYS.get(key, key)
        if name == "event_type" or name not in valid_fields:
            continue
        filtered[name] = value

    if cls is MessageUpdate:
        filtered["assistant_message_event"] = _parse_assistant_event(
            data.get("assistantMessageEvent")
        )
    if "message" in filtered and not isinstance(filtered["message"], dict):
        filtered["message"] = {}
    return cls(**filtered)


def event_to_dict(event: AgentEvent) -> dict[str, Any]:
    """Convert a typed event back to its wire shape (used for logging/replay)."""
    reverse = {v: k for k, v in _WIRE_KEYS.items()}
    d: dict[str, Any] = {"type": event.event_type}
    for f in fields(event):
        if f.name == "event_type":
            continue
        val = getattr(event, f.name)
        if val is None:
            continue
        if isinstance(val, AssistantMessageEvent):
            sub: dict[str, Any] = {"type": val.kind}
            if val.content_index is not None:
                sub["contentIndex"] = val.content_index
            if val.delta:
                sub["delta"] = val.delta
            if val.content is not None:
                sub["content"] = val.content
            if val.thinking is not None:
                sub["thinking"] = val.thinking
            if val.tool_call is not None:
                sub["toolCall"] = val.tool_call
            d["assistantMessageEvent"] = sub
            continue
        d[reverse.get(f.name, f.name)] = val
    return d


def decode_envelope(raw: str | bytes | dict[str, Any]) -> EventEnvelope:
    """Decode a transport payload into an :class:`EventEnvelope`.

    Raises:
        MalformedEnvelopeError: bad JSON, or ``sessionId``/``event`` missing.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedEnvelopeError(f"invalid JSON ({exc})", raw) from exc
    else:
        data = raw

    if not isinstance(data, dict):
        raise MalformedEnvelopeError("envelope is not an object", raw)
    session_id = data.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        raise MalformedEnvelopeError("missing sessionId", raw)
    event = data.get("event")
    if not isinstance(event, dict):
        raise MalformedEnvelopeError("missing event", raw)
    return EventEnvelope(session_id=session_id, event=dict_to_event(event))


def parse_envelope(raw: str | bytes | dict[str, Any]) -> EventEnvelope | None:
    """Like :func:`decode_envelope` but logs and returns None on failure."""
    try:
        return decode_envelope(raw)
    except MalformedEnvelopeError as exc:
        logger.warning("Dropping transport payload: %s", exc.reason)
        return None
