"""Async event bus between the agent transport and the reconciler.

The transport reader fires raw payloads via ``feed_raw``; the EventBus
parses them into envelopes and queues them for the session manager's
consumer loop.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from pidesk.adapters.events import EventEnvelope, parse_envelope

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue of transport envelopes, shared by every session."""

    def __init__(self, maxsize: int = 5000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[EventEnvelope] = asyncio.Queue(
            maxsize=maxsize
        )
        self._put_timeout = put_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def feed_raw(self, raw: str | bytes | dict[str, Any]) -> bool:
        """Parse a transport payload and enqueue it.

        Malformed payloads are logged and dropped. Returns True when the
        envelope was queued.
        """
        envelope = parse_envelope(raw)
        if envelope is None:
            return False
        return await self.emit(envelope)

    async def emit(self, envelope: EventEnvelope) -> bool:
        """Enqueue an already-parsed envelope."""
        if self._closed:
            return False
        try:
            # Back-pressure instead of dropping
            await asyncio.wait_for(
                self._queue.put(envelope), timeout=self._put_timeout
            )
            return True
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s for %s (queue size: %d)",
                self._put_timeout,
                envelope.event.event_type,
                envelope.session_id,
                self._queue.qsize(),
            )
            return False

    async def consume(self) -> AsyncIterator[EventEnvelope]:
        """Yield envelopes as they arrive.

        Stops once close() has been called and the queue is drained.
        """
        while not (self._closed and self._queue.empty()):
            try:
                envelope = await asyncio.wait_for(
                    self._queue.get(), timeout=0.5
                )
                yield envelope
            except asyncio.TimeoutError:
                continue

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True

    def reset(self) -> None:
        """Drain leftover envelopes and re-open the bus."""
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._closed = False
