"""Session lifecycle and event routing for every open session.

Owns the process-scoped state the reconciler works on (runtime registry,
delta batcher) and is the only thing that adds sessions to or removes them
from it.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any

from pidesk.adapters.event_bus import EventBus
from pidesk.adapters.events import AgentStart, EventEnvelope, parse_envelope
from pidesk.adapters.session_registry import SessionRuntime, SessionRuntimeRegistry
from pidesk.engine.batcher import DeltaBatcher
from pidesk.engine.config import ReconcilerConfig
from pidesk.engine.errors import UnknownSessionError
from pidesk.engine.reconciler import EventReconciler
from pidesk.engine.scheduler import FrameScheduler, LoopFrameScheduler
from pidesk.shared.stores.agent import AgentStore, StateFetcher
from pidesk.shared.stores.messages import MessagesStore

logger = logging.getLogger(__name__)


class SessionManager:
    """Routes transport envelopes to per-session runtimes."""

    def __init__(
        self,
        config: ReconcilerConfig | None = None,
        scheduler: FrameScheduler | None = None,
        state_fetcher: StateFetcher | None = None,
    ) -> None:
        self.config = config or ReconcilerConfig()
        self.registry = SessionRuntimeRegistry()
        self.batcher = DeltaBatcher(
            scheduler or LoopFrameScheduler(self.config.frame_interval_seconds)
        )
        self.reconciler = EventReconciler(self.batcher, self.config)
        self._state_fetcher = state_fetcher
        # Closed ids, oldest first; a late agent_start must not reopen them
        self._closed: OrderedDict[str, None] = OrderedDict()

    # ── lifecycle ───────────────────────────────────────────────────

    def start_session(self, session_id: str) -> SessionRuntime:
        """Register *session_id*, or return its runtime if already open."""
        runtime = self.registry.get(session_id)
        if runtime is not None:
            return runtime
        self._closed.pop(session_id, None)
        runtime = SessionRuntime(
            session_id=session_id,
            agent=AgentStore(session_id, self._state_fetcher),
            messages=MessagesStore(),
        )
        self.registry.register(runtime)
        logger.info("Session %s opened (%d open)", session_id, len(self.registry))
        return runtime

    def close_session(self, session_id: str) -> bool:
        """Tear down *session_id* in one synchronous step.

        Cancels its scheduled flush, drops pending deltas and buffered tool
        results, and unregisters it so events still in flight are dropped.
        """
        self.batcher.discard(session_id)
        self.reconciler.discard_session(session_id)
        removed = self.registry.remove(session_id) is not None
        self._remember_closed(session_id)
        if removed:
            logger.info("Session %s closed (%d open)", session_id, len(self.registry))
        return removed

    def _remember_closed(self, session_id: str) -> None:
        self._closed.pop(session_id, None)
        self._closed[session_id] = None
        while len(self._closed) > self.config.max_closed_sessions:
            self._closed.popitem(last=False)

    def get(self, session_id: str) -> SessionRuntime | None:
        return self.registry.get(session_id)

    def require(self, session_id: str) -> SessionRuntime:
        runtime = self.registry.get(session_id)
        if runtime is None:
            raise UnknownSessionError(session_id)
        return runtime

    # ── routing ─────────────────────────────────────────────────────

    def dispatch(self, raw: str | bytes | dict[str, Any]) -> bool:
        """Parse one transport payload and apply it. Never raises.

        Returns True if the event reached a registered session.
        """
        envelope = parse_envelope(raw)
        if envelope is None:
            return False
        return self.dispatch_envelope(envelope)

    def dispatch_envelope(self, envelope: EventEnvelope) -> bool:
        if (
            isinstance(envelope.event, AgentStart)
            and envelope.session_id not in self._closed
        ):
            self.start_session(envelope.session_id)
        if envelope.session_id not in self.registry:
            logger.debug(
                "Dropping %s for closed session %s",
                envelope.event.event_type, envelope.session_id,
            )
            return False
        self.reconciler.handle_envelope(self.registry, envelope)
        return True

    async def run(self, bus: EventBus) -> None:
        """Consume envelopes from *bus* until it is closed."""
        async for envelope in bus.consume():
            try:
                self.dispatch_envelope(envelope)
            except Exception:
                logger.exception(
                    "Error routing %s for session %s",
                    envelope.event.event_type, envelope.session_id,
                )
