"""Frame scheduler bound to a running Textual app.

Flushes land right after Textual repaints the screen, so the batcher
commits at the actual render cadence instead of a guessed interval.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from pidesk.engine.scheduler import FrameCallback, FrameHandle, FrameScheduler

if TYPE_CHECKING:
    from textual.message_pump import MessagePump


class TextualFrameScheduler(FrameScheduler):
    """Schedules callbacks via ``MessagePump.call_after_refresh``.

    Textual offers no way to withdraw a queued refresh callback, so
    cancellation is handled by the handle itself: a cancelled handle turns
    the eventual invocation into a no-op.
    """

    def __init__(self, pump: MessagePump) -> None:
        self._pump = pump

    def schedule(self, callback: FrameCallback) -> FrameHandle:
        handle = FrameHandle(callback)
        self._pump.call_after_refresh(handle.fire)
        return handle
