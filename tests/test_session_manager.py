"""Tests for pidesk.engine.session_manager: multi-session routing and teardown."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from pidesk.adapters.event_bus import EventBus
from pidesk.engine.config import ReconcilerConfig
from pidesk.engine.errors import UnknownSessionError
from pidesk.engine.scheduler import ManualFrameScheduler
from pidesk.engine.session_manager import SessionManager
from pidesk.shared.models.message import TextBlock


def _envelope(session_id: str, event: dict[str, Any]) -> str:
    return json.dumps({"sessionId": session_id, "event": event})


def _delta(session_id: str, text: str, index: int = 0) -> str:
    return _envelope(session_id, {
        "type": "message_update",
        "message": {"role": "assistant"},
        "assistantMessageEvent": {"type": "text_delta", "contentIndex": index, "delta": text},
    })


def _manager() -> tuple[SessionManager, ManualFrameScheduler]:
    scheduler = ManualFrameScheduler()
    return SessionManager(scheduler=scheduler), scheduler


def test_agent_start_registers_session() -> None:
    manager, _ = _manager()
    assert manager.dispatch(_envelope("s1", {"type": "agent_start"})) is True
    assert manager.get("s1") is not None
    assert manager.get("s1").agent.is_loading is True


def test_events_for_unknown_session_dropped() -> None:
    manager, _ = _manager()
    assert manager.dispatch(_delta("ghost", "boo")) is False
    assert manager.get("ghost") is None


def test_malformed_payloads_dropped() -> None:
    manager, _ = _manager()
    assert manager.dispatch("{not json") is False
    assert manager.dispatch(json.dumps({"event": {"type": "agent_start"}})) is False
    assert len(manager.registry) == 0


def test_start_session_idempotent() -> None:
    manager, _ = _manager()
    first = manager.start_session("s1")
    assert manager.start_session("s1") is first


def test_require_unknown_session_raises() -> None:
    manager, _ = _manager()
    with pytest.raises(UnknownSessionError):
        manager.require("nope")


def test_close_one_session_leaves_other_untouched() -> None:
    manager, scheduler = _manager()
    for sid in ("s1", "s2"):
        manager.dispatch(_envelope(sid, {"type": "agent_start"}))
        manager.dispatch(_delta(sid, f"{sid}-a"))

    s2 = manager.get("s2")
    s2_notes: list[int] = []
    s2.messages.subscribe(lambda store: s2_notes.append(1))
    s2_snapshot = [m.to_dict() for m in s2.messages.messages]

    manager.close_session("s2")
    # Frame fires after close: only s1 commits
    scheduler.tick()
    # In-flight events for s2 keep arriving
    assert manager.dispatch(_delta("s2", "-late")) is False
    assert manager.dispatch(_envelope("s2", {"type": "agent_end"})) is False
    manager.dispatch(_delta("s1", "-b"))
    manager.dispatch(_envelope("s1", {"type": "agent_end"}))

    assert s2_notes == []
    assert [m.to_dict() for m in s2.messages.messages] == s2_snapshot
    assert manager.get("s2") is None
    assert "s2" not in manager.batcher.sessions()

    s1 = manager.get("s1")
    assert s1.messages.messages[0].content == [TextBlock("s1-a-b")]
    assert s1.messages.messages[0].streaming is False


def test_late_agent_start_does_not_reopen_closed_session() -> None:
    manager, _ = _manager()
    manager.start_session("s1")
    manager.close_session("s1")
    assert manager.dispatch(_envelope("s1", {"type": "agent_start"})) is False
    assert manager.get("s1") is None

    # An explicit start reopens it
    manager.start_session("s1")
    assert manager.dispatch(_envelope("s1", {"type": "agent_start"})) is True


def test_closed_session_memory_is_bounded() -> None:
    manager = SessionManager(
        ReconcilerConfig(max_closed_sessions=2), scheduler=ManualFrameScheduler(),
    )
    for sid in ("s1", "s2", "s3"):
        manager.start_session(sid)
        manager.close_session(sid)

    # s1 was forgotten; the two most recent closes still block a late agent_start
    assert manager.dispatch(_envelope("s1", {"type": "agent_start"})) is True
    assert manager.dispatch(_envelope("s2", {"type": "agent_start"})) is False
    assert manager.dispatch(_envelope("s3", {"type": "agent_start"})) is False


def test_close_unknown_session_is_harmless() -> None:
    manager, _ = _manager()
    assert manager.close_session("never-opened") is False


@pytest.mark.asyncio
async def test_run_consumes_bus_until_closed() -> None:
    manager = SessionManager()
    bus = EventBus(maxsize=100)
    consumer = asyncio.create_task(manager.run(bus))

    await bus.feed_raw(_envelope("s1", {"type": "agent_start"}))
    await bus.feed_raw("garbage")
    await bus.feed_raw(_delta("s1", "Hi"))
    await bus.feed_raw(_delta("s1", " there"))
    await bus.feed_raw(_envelope("s1", {"type": "agent_end"}))
    bus.close()
    await asyncio.wait_for(consumer, timeout=5)

    [message] = manager.get("s1").messages.messages
    assert message.content == [TextBlock("Hi there")]
    assert message.streaming is False


@pytest.mark.asyncio
async def test_loop_scheduler_commits_on_next_frame() -> None:
    manager = SessionManager()
    manager.dispatch(_envelope("s1", {"type": "agent_start"}))
    runtime = manager.get("s1")
    notes: list[int] = []
    runtime.messages.subscribe(lambda store: notes.append(1))

    manager.dispatch(_delta("s1", "a"))
    manager.dispatch(_delta("s1", "b"))
    # create_streaming_message notified once; deltas not yet committed
    assert len(notes) == 1
    await asyncio.sleep(0.1)
    assert len(notes) == 2
    assert runtime.messages.streaming_content() == [TextBlock("ab")]


@pytest.mark.asyncio
async def test_state_refresh_failure_is_not_fatal(caplog) -> None:
    async def failing_fetch(session_id: str) -> dict:
        return {"success": False, "error": "backend down"}

    manager = SessionManager(scheduler=ManualFrameScheduler(), state_fetcher=failing_fetch)
    manager.dispatch(_envelope("s1", {"type": "agent_start"}))
    manager.dispatch(_delta("s1", "kept"))
    manager.dispatch(_envelope("s1", {"type": "agent_end"}))
    await asyncio.sleep(0.05)

    assert "backend down" in caplog.text
    runtime = manager.get("s1")
    assert runtime.messages.messages[0].content == [TextBlock("kept")]
    assert runtime.agent.error == "backend down"


@pytest.mark.asyncio
async def test_state_refresh_updates_model() -> None:
    async def fetch(session_id: str) -> dict:
        return {"success": True, "data": {"model": {"id": "m-1", "provider": "p"}}}

    manager = SessionManager(scheduler=ManualFrameScheduler(), state_fetcher=fetch)
    manager.dispatch(_envelope("s1", {"type": "agent_start"}))
    manager.dispatch(_envelope("s1", {"type": "auto_compaction_end"}))
    await asyncio.sleep(0.05)

    agent = manager.get("s1").agent
    assert agent.current_model == "m-1"
    assert agent.current_provider == "p"


@pytest.mark.asyncio
async def test_close_cancels_in_flight_refresh() -> None:
    started = asyncio.Event()
    finished = []

    async def slow_fetch(session_id: str) -> dict:
        started.set()
        await asyncio.sleep(10)
        finished.append(session_id)
        return {"success": True, "data": {}}

    manager = SessionManager(scheduler=ManualFrameScheduler(), state_fetcher=slow_fetch)
    manager.dispatch(_envelope("s1", {"type": "agent_start"}))
    manager.dispatch(_envelope("s1", {"type": "agent_end"}))
    await asyncio.wait_for(started.wait(), timeout=1)
    manager.close_session("s1")
    await asyncio.sleep(0.05)

    assert finished == []
