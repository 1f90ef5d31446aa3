"""Event reconciler: applies agent events to a session's message model.

Consumes ``(session, event)`` pairs in transport order and turns them into
edits on the session's message store:

* structural events (block start/end, full tool calls, message and turn
  boundaries) are applied immediately, after force-flushing any deltas
  still pending for that session, so they never overtake earlier fragments;
* ``text_delta``/``thinking_delta`` go through the DeltaBatcher and reach
  the store at most once per frame;
* an assistant ``message_end`` is authoritative: pending commits are
  cancelled and non-empty final content replaces whatever streamed.

Handling one event is fully synchronous. The only asynchronous work is the
best-effort agent state refresh after terminal events, which runs as a
task on the current event loop and never rolls back content on failure.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import TYPE_CHECKING

from pidesk.adapters.events import (
    AgentEnd,
    AgentEvent,
    AgentStart,
    AssistantMessageEvent,
    AutoCompactionEnd,
    AutoCompactionStart,
    AutoRetryEnd,
    AutoRetryStart,
    EventEnvelope,
    MessageEnd,
    MessageStart,
    MessageUpdate,
    ToolExecutionEnd,
    ToolExecutionStart,
    ToolExecutionUpdate,
    TurnEnd,
    TurnStart,
)
from pidesk.adapters.session_registry import SessionPhase
from pidesk.engine.config import ReconcilerConfig
from pidesk.engine.errors import StateRefreshError
from pidesk.shared.formatters.tool_result import format_tool_result
from pidesk.shared.models.content import (
    block_from_dict,
    convert_assistant_content,
    extract_assistant_error,
    set_block,
)
from pidesk.shared.models.message import (
    BlockKind,
    ContentBlock,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
)

if TYPE_CHECKING:
    from pidesk.adapters.session_registry import SessionRuntime, SessionRuntimeRegistry
    from pidesk.engine.batcher import DeltaBatcher

logger = logging.getLogger(__name__)

_DELTA_KINDS: dict[str, BlockKind] = {
    "text_delta": BlockKind.TEXT,
    "thinking_delta": BlockKind.THINKING,
}

_STRUCTURAL_KINDS = frozenset({
    "text_start", "text_end", "thinking_start", "thinking_end", "toolcall_end",
})

_INFORMATIONAL = (
    ToolExecutionStart,
    ToolExecutionUpdate,
    AutoCompactionStart,
    AutoRetryStart,
    AutoRetryEnd,
)


class EventReconciler:
    """Reduces agent events into per-session message state."""

    def __init__(
        self,
        batcher: DeltaBatcher,
        config: ReconcilerConfig | None = None,
    ) -> None:
        self._batcher = batcher
        self._config = config or ReconcilerConfig()
        # Tool results whose tool call block does not exist yet, per session
        self._unattached: dict[str, OrderedDict[str, tuple[str, bool]]] = {}
        self._refresh_tasks: dict[str, set[asyncio.Task]] = {}

    # ── entry points ────────────────────────────────────────────────

    def handle_envelope(
        self, registry: SessionRuntimeRegistry, envelope: EventEnvelope,
    ) -> None:
        runtime = registry.get(envelope.session_id)
        if runtime is None:
            logger.debug(
                "Dropping %s for unregistered session %s",
                envelope.event.event_type, envelope.session_id,
            )
            return
        self.handle(runtime, envelope.event)

    def handle(self, runtime: SessionRuntime, event: AgentEvent) -> None:
        """Apply one event to *runtime*. Never raises."""
        try:
            self._dispatch(runtime, event)
        except Exception:
            logger.exception(
                "Error reconciling %s for session %s",
                event.event_type, runtime.session_id,
            )

    def discard_session(self, session_id: str) -> None:
        """Forget buffered results and cancel refreshes for a closed session."""
        self._unattached.pop(session_id, None)
        for task in self._refresh_tasks.pop(session_id, set()):
            task.cancel()

    def unattached_results(self, session_id: str) -> dict[str, tuple[str, bool]]:
        return dict(self._unattached.get(session_id, {}))

    # ── dispatch ────────────────────────────────────────────────────

    def _dispatch(self, runtime: SessionRuntime, event: AgentEvent) -> None:
        sid = runtime.session_id

        if isinstance(event, MessageUpdate):
            self._handle_message_update(runtime, event)
            return
        if isinstance(event, MessageEnd):
            self._handle_message_end(runtime, event)
            return

        # Everything else is structural: pending fragments land first
        self._batcher.flush(sid)

        if isinstance(event, AgentStart):
            runtime.agent.set_loading(True)
            runtime.phase = SessionPhase.LOADING
        elif isinstance(event, AgentEnd):
            runtime.agent.set_loading(False)
            runtime.messages.finalize_streaming_message()
            runtime.phase = SessionPhase.IDLE
            self._refresh_state(runtime)
        elif isinstance(event, TurnStart):
            # The next content-bearing event opens the streaming message
            runtime.phase = SessionPhase.TURN_ACTIVE
        elif isinstance(event, TurnEnd):
            runtime.messages.finalize_streaming_message()
            runtime.phase = SessionPhase.TURN_SETTLED
        elif isinstance(event, MessageStart):
            self._handle_message_start(runtime, event)
        elif isinstance(event, ToolExecutionEnd):
            self._handle_tool_execution_end(runtime, event)
        elif isinstance(event, AutoCompactionEnd):
            self._refresh_state(runtime)
        elif isinstance(event, _INFORMATIONAL):
            pass
        else:
            logger.debug("Ignoring unknown event type %r for session %s", event.event_type, sid)

    # ── individual event handlers ───────────────────────────────────

    def _handle_message_start(self, runtime: SessionRuntime, event: MessageStart) -> None:
        message = event.message
        role = message.get("role")
        if role == "user":
            runtime.messages.add_user_message(message)
        elif role == "toolResult":
            # Same payload as tool_execution_end; covers a dropped one
            call_id = message.get("toolCallId")
            if not isinstance(call_id, str) or not call_id:
                return
            self._attach_result(
                runtime,
                call_id,
                format_tool_result(message.get("content")),
                message.get("isError") is True,
            )

    def _handle_message_update(self, runtime: SessionRuntime, event: MessageUpdate) -> None:
        if event.message.get("role") != "assistant":
            return
        sub = event.assistant_message_event
        index = sub.content_index
        if index is None:
            logger.debug("Dropping %s without contentIndex", sub.kind or "message_update")
            return

        # Any assistant sub-event marks the turn as streaming
        content = self._ensure_streaming_message(runtime)

        delta_kind = _DELTA_KINDS.get(sub.kind)
        if delta_kind is not None:
            if self._batcher.enqueue(runtime, index, sub.delta, delta_kind):
                self._batcher.schedule_flush(runtime.session_id)
            return

        if sub.kind not in _STRUCTURAL_KINDS:
            # toolcall_start/toolcall_delta: wait for the full toolcall_end
            return

        block = self._structural_block(runtime.session_id, sub)
        if block is None:
            logger.debug("Dropping toolcall_end without a tool call object")
            return

        self._batcher.flush(runtime.session_id)
        set_block(content, index, block)
        runtime.messages.update_streaming_message(content)

    def _handle_message_end(self, runtime: SessionRuntime, event: MessageEnd) -> None:
        message = event.message
        if message.get("role") == "assistant":
            # The final content wins over any fragments still in flight
            self._batcher.cancel(runtime.session_id)

            content = convert_assistant_content(message.get("content"))
            if not content:
                error = extract_assistant_error(message)
                if error:
                    content = [TextBlock(text=f"Error: {error}")]

            if content:
                previous = runtime.messages.streaming_content() or []
                _carry_tool_results(previous, content)
                self._apply_unattached(runtime.session_id, content)
                self._ensure_streaming_message(runtime)
                runtime.messages.update_streaming_message(content)
            self._refresh_state(runtime)
        else:
            self._batcher.flush(runtime.session_id)

        runtime.messages.finalize_streaming_message()
        if runtime.phase is SessionPhase.STREAMING:
            runtime.phase = SessionPhase.TURN_ACTIVE

    def _handle_tool_execution_end(
        self, runtime: SessionRuntime, event: ToolExecutionEnd,
    ) -> None:
        if not isinstance(event.tool_call_id, str) or not event.tool_call_id:
            return
        self._attach_result(
            runtime,
            event.tool_call_id,
            format_tool_result(event.result),
            event.is_error is True,
        )

    # ── helpers ─────────────────────────────────────────────────────

    def _ensure_streaming_message(self, runtime: SessionRuntime) -> list[ContentBlock]:
        content = runtime.messages.streaming_content()
        if content is None:
            runtime.messages.create_streaming_message()
            runtime.phase = SessionPhase.STREAMING
            content = runtime.messages.streaming_content()
        return content if content is not None else []

    def _structural_block(
        self, session_id: str, sub: AssistantMessageEvent,
    ) -> ContentBlock | None:
        if sub.kind == "text_start":
            return TextBlock()
        if sub.kind == "text_end":
            return TextBlock(text=sub.content or "")
        if sub.kind == "thinking_start":
            return ThinkingBlock()
        if sub.kind == "thinking_end":
            thinking = sub.content if sub.content is not None else sub.thinking
            return ThinkingBlock(thinking=thinking or "")
        # toolcall_end
        if sub.tool_call is None:
            return None
        block = block_from_dict({**sub.tool_call, "type": "toolCall"})
        if isinstance(block, ToolCallBlock):
            self._apply_unattached(session_id, [block])
        return block

    def _attach_result(
        self, runtime: SessionRuntime, call_id: str, text: str, is_error: bool,
    ) -> None:
        if runtime.messages.update_tool_call_result(call_id, text, is_error):
            return
        pending = self._unattached.setdefault(runtime.session_id, OrderedDict())
        pending.pop(call_id, None)
        pending[call_id] = (text, is_error)
        while len(pending) > self._config.max_unattached_tool_results:
            evicted, _ = pending.popitem(last=False)
            logger.debug("Evicting unattached tool result %s", evicted)
        logger.debug(
            "Holding result for tool call %s until its block exists (session %s)",
            call_id, runtime.session_id,
        )

    def _apply_unattached(self, session_id: str, blocks: list[ContentBlock]) -> None:
        pending = self._unattached.get(session_id)
        if not pending:
            return
        for block in blocks:
            if isinstance(block, ToolCallBlock) and block.id in pending:
                block.result, block.is_error = pending.pop(block.id)

    def _refresh_state(self, runtime: SessionRuntime) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping state refresh for %s", runtime.session_id)
            return
        task = loop.create_task(self._run_refresh(runtime))
        tasks = self._refresh_tasks.setdefault(runtime.session_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    @staticmethod
    async def _run_refresh(runtime: SessionRuntime) -> None:
        try:
            await runtime.agent.refresh_state()
        except StateRefreshError as exc:
            logger.warning("Failed to refresh agent state: %s", exc)
        except Exception:
            logger.warning(
                "Failed to refresh agent state for %s", runtime.session_id,
                exc_info=True,
            )


def _carry_tool_results(previous: list[ContentBlock], content: list[ContentBlock]) -> None:
    """Keep results already attached to tool calls that *content* re-delivers."""
    known = {
        b.id: b for b in previous
        if isinstance(b, ToolCallBlock) and b.result is not None
    }
    if not known:
        return
    for block in content:
        if isinstance(block, ToolCallBlock) and block.result is None:
            old = known.get(block.id)
            if old is not None:
                block.result, block.is_error = old.result, old.is_error
