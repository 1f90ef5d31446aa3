"""pidesk engine: reconciles streaming agent events into per-session messages."""
from .config import ReconcilerConfig
from .errors import (
    MalformedEnvelopeError,
    ReconcilerError,
    StateRefreshError,
    UnknownSessionError,
)
from .scheduler import (
    FrameHandle,
    FrameScheduler,
    LoopFrameScheduler,
    ManualFrameScheduler,
)

__all__ = [
    # Core (lazy import to avoid circular deps)
    "DeltaBatcher",
    "EventReconciler",
    "SessionManager",
    # Config
    "ReconcilerConfig",
    "load_yaml_config",
    # Scheduling
    "FrameHandle",
    "FrameScheduler",
    "LoopFrameScheduler",
    "ManualFrameScheduler",
    # Errors
    "MalformedEnvelopeError",
    "ReconcilerError",
    "StateRefreshError",
    "UnknownSessionError",
]


def __getattr__(name: str):
    if name == "DeltaBatcher":
        from .batcher import DeltaBatcher
        return DeltaBatcher
    if name == "EventReconciler":
        from .reconciler import EventReconciler
        return EventReconciler
    if name == "SessionManager":
        from .session_manager import SessionManager
        return SessionManager
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
