"""Adapters package - bridge between the agent transport and the engine.

Contains the typed event model, the transport event bus, and the
per-session runtime registry the reconciler mutates.
"""
from __future__ import annotations

__all__ = [
    "AgentEvent",
    "EventBus",
    "EventEnvelope",
    "SessionPhase",
    "SessionRuntime",
    "SessionRuntimeRegistry",
    "decode_envelope",
    "dict_to_event",
    "parse_envelope",
]

from pidesk.adapters.event_bus import EventBus
from pidesk.adapters.events import (
    AgentEvent,
    EventEnvelope,
    decode_envelope,
    dict_to_event,
    parse_envelope,
)
from pidesk.adapters.session_registry import (
    SessionPhase,
    SessionRuntime,
    SessionRuntimeRegistry,
)
