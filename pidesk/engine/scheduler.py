"""Frame-synchronized callback primitives for the delta batcher.

The batcher needs "run this once, on the next display refresh" with the
ability to cancel. Anything that can provide that is a FrameScheduler:
an asyncio coalescing timer, a Textual refresh hook
(``pidesk.tui.frame_scheduler``), or an explicit tick for replay and tests.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable


FrameCallback = Callable[[], None]

DEFAULT_FRAME_INTERVAL = 1 / 60


class FrameHandle:
    """A single-shot, cancellable frame callback."""

    def __init__(self, callback: FrameCallback) -> None:
        self._callback = callback
        self._done = False
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._done

    def cancel(self) -> None:
        self._cancelled = True

    def fire(self) -> None:
        """Run the callback unless it already ran or was cancelled."""
        if self._done or self._cancelled:
            return
        self._done = True
        self._callback()


class FrameScheduler(ABC):
    """Schedules callbacks for the next display refresh."""

    @abstractmethod
    def schedule(self, callback: FrameCallback) -> FrameHandle:
        """Arrange for *callback* to run once on the next frame."""


class _TimerFrameHandle(FrameHandle):
    def __init__(self, callback: FrameCallback) -> None:
        super().__init__(callback)
        self.timer: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        super().cancel()
        if self.timer is not None:
            self.timer.cancel()


class LoopFrameScheduler(FrameScheduler):
    """Coalescing asyncio timer, one frame interval out."""

    def __init__(
        self,
        interval: float = DEFAULT_FRAME_INTERVAL,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._interval = interval
        self._loop = loop

    def schedule(self, callback: FrameCallback) -> FrameHandle:
        handle = _TimerFrameHandle(callback)
        loop = self._loop or asyncio.get_running_loop()
        handle.timer = loop.call_later(self._interval, handle.fire)
        return handle


class ManualFrameScheduler(FrameScheduler):
    """Frames advance only when ``tick()`` is called."""

    def __init__(self) -> None:
        self._queued: list[FrameHandle] = []

    @property
    def pending(self) -> int:
        return sum(1 for h in self._queued if not h.cancelled and not h.done)

    def schedule(self, callback: FrameCallback) -> FrameHandle:
        handle = FrameHandle(callback)
        self._queued.append(handle)
        return handle

    def tick(self) -> int:
        """Fire every handle queued before this tick; return how many ran."""
        due, self._queued = self._queued, []
        fired = 0
        for handle in due:
            if handle.cancelled or handle.done:
                continue
            handle.fire()
            fired += 1
        return fired
