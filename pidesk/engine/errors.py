"""Exception hierarchy for the reconciliation engine.

None of these escape ``EventReconciler.handle`` or
``SessionManager.dispatch``; they exist so the layers underneath can
signal a specific failure mode and the caller can log and carry on.
"""
from __future__ import annotations


class ReconcilerError(Exception):
    """Base exception for all reconciliation errors."""


class MalformedEnvelopeError(ReconcilerError):
    """Transport payload could not be decoded into a session event."""
    def __init__(self, reason: str, raw: object = None):
        self.reason = reason
        self.raw = raw
        super().__init__(f"Malformed event envelope: {reason}")


class UnknownSessionError(ReconcilerError):
    """No runtime is registered for the session."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No runtime registered for session {session_id}")


class StateRefreshError(ReconcilerError):
    """Refreshing agent state from the backend failed."""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(
            f"Failed to refresh agent state for session {session_id}: {reason}"
        )
