"""Lookup from session id to the session's agent/message store pair."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pidesk.shared.stores.agent import AgentStore
from pidesk.shared.stores.messages import MessagesStore


class SessionPhase(Enum):
    IDLE = "idle"
    LOADING = "loading"
    TURN_ACTIVE = "turn_active"
    STREAMING = "streaming"
    TURN_SETTLED = "turn_settled"


@dataclass
class SessionRuntime:
    """Everything the reconciler mutates for one open session."""

    session_id: str
    agent: AgentStore
    messages: MessagesStore = field(default_factory=MessagesStore)
    phase: SessionPhase = SessionPhase.IDLE


class SessionRuntimeRegistry:
    """Process-wide map of open sessions.

    Only the session manager registers and removes entries; the reconciler
    looks them up per event.
    """

    def __init__(self) -> None:
        self._runtimes: dict[str, SessionRuntime] = {}

    def register(self, runtime: SessionRuntime) -> SessionRuntime:
        """Register *runtime*, keeping an already-registered one for the same id."""
        existing = self._runtimes.get(runtime.session_id)
        if existing is not None:
            return existing
        self._runtimes[runtime.session_id] = runtime
        return runtime

    def get(self, session_id: str) -> SessionRuntime | None:
        return self._runtimes.get(session_id)

    def remove(self, session_id: str) -> SessionRuntime | None:
        return self._runtimes.pop(session_id, None)

    def session_ids(self) -> list[str]:
        return list(self._runtimes)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._runtimes

    def __len__(self) -> int:
        return len(self._runtimes)
