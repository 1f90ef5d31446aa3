"""Session-scoped message list and streaming-message bookkeeping."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pidesk.shared.formatters.tool_result import format_tool_result
from pidesk.shared.models.content import (
    convert_assistant_content,
    convert_user_content,
    timestamp_from_ms,
)
from pidesk.shared.models.message import (
    ContentBlock,
    Message,
    MessageRole,
    TextBlock,
    ToolCallBlock,
)

logger = logging.getLogger(__name__)

StoreListener = Callable[["MessagesStore"], None]


class MessagesStore:
    """Holds every message of one session.

    At most one assistant message is "streaming" at a time; its id is kept
    in ``streaming_message_id`` until it is finalized. Listeners are
    notified once per commit so a view can re-render.
    """

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.streaming_message_id: str | None = None
        self._listeners: list[StoreListener] = []

    # ── change notification ─────────────────────────────────────────

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("MessagesStore listener failed")

    # ── lookups ─────────────────────────────────────────────────────

    def get(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def streaming_message(self) -> Message | None:
        if not self.streaming_message_id:
            return None
        message = self.get(self.streaming_message_id)
        if message is None or message.role is not MessageRole.ASSISTANT:
            return None
        return message

    @property
    def has_streaming_message(self) -> bool:
        return self.streaming_message() is not None

    def streaming_content(self) -> list[ContentBlock] | None:
        """Current content list of the streaming message (looked up fresh)."""
        message = self.streaming_message()
        return message.content if message is not None else None

    # ── mutation ────────────────────────────────────────────────────

    def add_message(self, message: Message) -> None:
        self.messages.append(message)
        self._notify()

    def clear_messages(self) -> None:
        self.messages = []
        self.streaming_message_id = None
        self._notify()

    def add_user_message(self, raw: dict[str, Any]) -> Message:
        message = Message(
            role=MessageRole.USER,
            content=[TextBlock(text=convert_user_content(raw.get("content")))],
            timestamp=timestamp_from_ms(raw.get("timestamp")),
        )
        self.add_message(message)
        return message

    def create_streaming_message(self) -> str:
        message = Message(role=MessageRole.ASSISTANT, streaming=True)
        self.streaming_message_id = message.id
        self.add_message(message)
        return message.id

    def update_streaming_message(self, content: list[ContentBlock]) -> None:
        """Commit *content* as the streaming message's content list.

        The list is stored by reference: the delta batcher keeps appending
        into the same list between commits.
        """
        message = self.streaming_message()
        if message is None:
            return
        message.content = content
        self._notify()

    def finalize_streaming_message(self) -> None:
        if not self.streaming_message_id:
            return
        message = self.streaming_message()
        if message is not None:
            message.streaming = False
        self.streaming_message_id = None
        self._notify()

    def update_tool_call_result(
        self, tool_call_id: str, result: str, is_error: bool,
    ) -> bool:
        """Attach a result to the tool call block with *tool_call_id*.

        Searches the most recent assistant message first. Returns False when
        no block with that id exists yet.
        """
        for message in reversed(self.messages):
            if message.role is not MessageRole.ASSISTANT:
                continue
            block = message.find_tool_call(tool_call_id)
            if block is not None:
                block.result = result
                block.is_error = is_error
                self._notify()
                return True
        logger.debug("Tool result received for unknown toolCallId: %s", tool_call_id)
        return False

    def add_error_message(self, error_text: str) -> Message:
        message = Message(
            role=MessageRole.ASSISTANT,
            content=[TextBlock(text=f"Error: {error_text}")],
        )
        self.add_message(message)
        return message

    def add_system_message(self, text: str) -> Message:
        message = Message(role=MessageRole.ASSISTANT, content=[TextBlock(text=text)])
        self.add_message(message)
        return message

    # ── history ─────────────────────────────────────────────────────

    def load_from_agent_messages(self, agent_messages: list[dict[str, Any]]) -> None:
        """Replace the message list with the agent's own history.

        Tool results are separate ``toolResult`` messages on the agent side;
        they are folded back onto the matching assistant ``toolCall`` blocks.
        """
        results: dict[str, tuple[str, bool]] = {}
        for raw in agent_messages:
            if not isinstance(raw, dict) or raw.get("role") != "toolResult":
                continue
            call_id = raw.get("toolCallId")
            if not isinstance(call_id, str) or not call_id:
                continue
            results[call_id] = (
                format_tool_result(raw.get("content")),
                raw.get("isError") is True,
            )

        loaded: list[Message] = []
        for raw in agent_messages:
            if not isinstance(raw, dict):
                continue
            timestamp = timestamp_from_ms(raw.get("timestamp"))
            role = raw.get("role")
            if role == "user":
                loaded.append(Message(
                    role=MessageRole.USER,
                    content=[TextBlock(text=convert_user_content(raw.get("content")))],
                    timestamp=timestamp,
                ))
            elif role == "assistant":
                content = convert_assistant_content(raw.get("content"))
                for block in content:
                    if isinstance(block, ToolCallBlock) and block.id in results:
                        block.result, block.is_error = results[block.id]
                loaded.append(Message(
                    role=MessageRole.ASSISTANT,
                    content=content,
                    timestamp=timestamp,
                ))

        self.messages = loaded
        self.streaming_message_id = None
        self._notify()
