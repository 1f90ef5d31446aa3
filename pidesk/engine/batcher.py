"""Per-session coalescing of streaming text/thinking fragments.

Fragments can arrive many times per second. Each one is appended to the
streaming message's content list as soon as it arrives (so a direct read
of the list is always current), but the message store is only told about
it once per frame. A pending-delta list records what has been applied
since the last commit; it drives *when* to commit and is never replayed.

The content list a batch holds is the same list object the message store
exposes for the streaming message (aliased on purpose, no copy). It is
re-fetched on every enqueue because the store may have swapped the
message's list since the previous fragment.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pidesk.engine.scheduler import FrameHandle, FrameScheduler
from pidesk.shared.models.content import append_to_block
from pidesk.shared.models.message import BlockKind, ContentBlock

if TYPE_CHECKING:
    from pidesk.adapters.session_registry import SessionRuntime
    from pidesk.shared.stores.messages import MessagesStore

logger = logging.getLogger(__name__)


@dataclass
class PendingDelta:
    content_index: int
    delta: str
    kind: BlockKind


@dataclass
class SessionBatch:
    """Batching state owned by exactly one session."""
    session_id: str
    messages: MessagesStore
    pending: list[PendingDelta] = field(default_factory=list)
    handle: FrameHandle | None = None
    content_ref: list[ContentBlock] | None = None
    commits: int = 0


class DeltaBatcher:
    """Process-wide map of per-session batches.

    Batches never share state, so sessions are flushed and torn down
    independently.
    """

    def __init__(self, scheduler: FrameScheduler) -> None:
        self._scheduler = scheduler
        self._batches: dict[str, SessionBatch] = {}

    # ── queries ─────────────────────────────────────────────────────

    def sessions(self) -> list[str]:
        return list(self._batches)

    def has_pending(self, session_id: str) -> bool:
        batch = self._batches.get(session_id)
        return bool(batch and batch.pending)

    def pending_count(self, session_id: str) -> int:
        batch = self._batches.get(session_id)
        return len(batch.pending) if batch else 0

    def is_scheduled(self, session_id: str) -> bool:
        batch = self._batches.get(session_id)
        return batch is not None and batch.handle is not None

    def commit_count(self, session_id: str) -> int:
        batch = self._batches.get(session_id)
        return batch.commits if batch else 0

    # ── batching ────────────────────────────────────────────────────

    def enqueue(
        self,
        runtime: SessionRuntime,
        index: int,
        fragment: str,
        kind: BlockKind,
    ) -> bool:
        """Apply *fragment* at *index* now and record it for the next commit.

        Returns False when the session has no streaming message to write to.
        """
        content = runtime.messages.streaming_content()
        if content is None:
            return False

        batch = self._batches.get(runtime.session_id)
        if batch is None:
            batch = SessionBatch(
                session_id=runtime.session_id, messages=runtime.messages,
            )
            self._batches[runtime.session_id] = batch
        batch.messages = runtime.messages
        batch.content_ref = content

        append_to_block(content, index, fragment, kind)
        batch.pending.append(PendingDelta(index, fragment, kind))
        return True

    def schedule_flush(self, session_id: str) -> None:
        """Make sure a frame callback is pending for *session_id* (idempotent)."""
        batch = self._batches.get(session_id)
        if batch is None or batch.handle is not None:
            return
        batch.handle = self._scheduler.schedule(
            lambda: self._on_frame(session_id, batch)
        )

    def flush(self, session_id: str) -> bool:
        """Commit pending deltas right now.

        Cancels any scheduled callback so the commit cannot happen twice.
        Returns True if a commit was made.
        """
        batch = self._batches.get(session_id)
        if batch is None:
            return False
        self._cancel_handle(batch)
        return self._commit(batch)

    def cancel(self, session_id: str) -> None:
        """Drop pending deltas without committing them."""
        batch = self._batches.get(session_id)
        if batch is None:
            return
        self._cancel_handle(batch)
        if batch.pending:
            logger.debug(
                "Discarding %d pending delta(s) for session %s",
                len(batch.pending), session_id,
            )
        batch.pending = []
        batch.content_ref = None

    def discard(self, session_id: str) -> None:
        """Cancel and forget *session_id* entirely (session closed)."""
        self.cancel(session_id)
        self._batches.pop(session_id, None)

    # ── internals ───────────────────────────────────────────────────

    @staticmethod
    def _cancel_handle(batch: SessionBatch) -> None:
        if batch.handle is not None:
            batch.handle.cancel()
            batch.handle = None

    def _on_frame(self, session_id: str, batch: SessionBatch) -> None:
        # A batch replaced or discarded since scheduling must not commit
        if self._batches.get(session_id) is not batch:
            return
        batch.handle = None
        try:
            self._commit(batch)
        except Exception:
            logger.exception("Scheduled flush failed for session %s", session_id)

    @staticmethod
    def _commit(batch: SessionBatch) -> bool:
        if not batch.pending:
            return False
        batch.pending = []
        content = batch.content_ref
        if content is None:
            return False
        batch.messages.update_streaming_message(content)
        batch.commits += 1
        return True
