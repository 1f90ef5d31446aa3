"""Tests for the in-memory session stores."""

from __future__ import annotations

import asyncio

import pytest

from pidesk.engine.errors import StateRefreshError
from pidesk.shared.models.message import MessageRole, TextBlock, ToolCallBlock
from pidesk.shared.stores.agent import AgentStore
from pidesk.shared.stores.messages import MessagesStore


class TestMessagesStore:
    def test_streaming_lifecycle(self):
        store = MessagesStore()
        message_id = store.create_streaming_message()
        assert store.streaming_message_id == message_id
        assert store.has_streaming_message

        content = [TextBlock("hi")]
        store.update_streaming_message(content)
        assert store.streaming_content() is content

        store.finalize_streaming_message()
        assert store.streaming_message_id is None
        assert store.messages[0].streaming is False

    def test_update_without_streaming_message_is_noop(self):
        store = MessagesStore()
        store.update_streaming_message([TextBlock("lost")])
        assert store.messages == []

    def test_finalize_twice_is_harmless(self):
        store = MessagesStore()
        store.create_streaming_message()
        store.finalize_streaming_message()
        store.finalize_streaming_message()
        assert len(store.messages) == 1

    def test_update_tool_call_result_unknown_returns_false(self):
        store = MessagesStore()
        assert store.update_tool_call_result("missing", "x", False) is False

    def test_listener_errors_do_not_break_commit(self, caplog):
        store = MessagesStore()
        seen = []

        def bad(_store):
            raise RuntimeError("boom")

        store.subscribe(bad)
        store.subscribe(lambda s: seen.append(len(s.messages)))
        store.add_system_message("hello")

        assert seen == [1]
        assert "MessagesStore listener failed" in caplog.text

    def test_unsubscribe(self):
        store = MessagesStore()
        seen = []
        unsubscribe = store.subscribe(lambda s: seen.append(1))
        store.add_system_message("a")
        unsubscribe()
        store.add_system_message("b")
        assert seen == [1]

    def test_add_error_message(self):
        store = MessagesStore()
        message = store.add_error_message("broken")
        assert message.content == [TextBlock("Error: broken")]
        assert message.role is MessageRole.ASSISTANT

    def test_load_from_agent_messages_folds_tool_results(self):
        store = MessagesStore()
        store.create_streaming_message()
        store.load_from_agent_messages([
            {"role": "user", "content": "list files", "timestamp": 1700000000000},
            {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Sure"},
                    {"type": "toolCall", "id": "c1", "name": "bash", "arguments": {"cmd": "ls"}},
                ],
            },
            {
                "role": "toolResult", "toolCallId": "c1",
                "content": [{"type": "text", "text": "a.py"}], "isError": False,
            },
            {"role": "toolResult", "content": "orphan"},
            "not a message",
        ])

        assert store.streaming_message_id is None
        user, assistant = store.messages
        assert user.content == [TextBlock("list files")]
        assert assistant.content[1] == ToolCallBlock(
            id="c1", name="bash", arguments={"cmd": "ls"}, result="a.py", is_error=False,
        )


class TestAgentStore:
    def test_set_loading(self):
        agent = AgentStore("s1")
        agent.set_loading(True)
        assert agent.is_loading is True

    def test_refresh_without_fetcher_is_noop(self):
        agent = AgentStore("s1")
        asyncio.run(agent.refresh_state())
        assert agent.current_model == ""

    def test_refresh_wraps_fetch_exceptions(self):
        async def fetch(session_id):
            raise ConnectionError("pipe closed")

        agent = AgentStore("s1", fetch)
        with pytest.raises(StateRefreshError) as exc_info:
            asyncio.run(agent.refresh_state())
        assert "pipe closed" in str(exc_info.value)
        assert exc_info.value.session_id == "s1"

    def test_refresh_unsuccessful_response(self):
        async def fetch(session_id):
            return {"success": False}

        agent = AgentStore("s1", fetch)
        with pytest.raises(StateRefreshError):
            asyncio.run(agent.refresh_state())
        assert agent.error == "Failed to get agent state"
