"""Tests for ChatSession: turn persistence, session id capture, permission replies."""
from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentstream.adapters.chat_session import ChatSession
from agentstream.adapters.event_bus import LocalChannelBus
from agentstream.adapters.orchestrator import StreamOrchestrator
from agentstream.engine.errors import PersistenceError
from agentstream.engine.projector import TextItem
from agentstream.shared.models.message import Chat, MessageRole, NewMessage


# ── Helper factories ──


def _init(session_id: str = "sess-1") -> str:
    return json.dumps({"type": "system", "subtype": "init", "session_id": session_id})


def _say(text: str) -> str:
    return json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}})


def _use(tool_id: str, name: str) -> str:
    return json.dumps({
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "id": tool_id, "name": name, "input": {}}]},
    })


def _tool_result(tool_id: str, content: str, is_error: bool = False) -> str:
    return json.dumps({
        "type": "user",
        "message": {"content": [
            {"type": "tool_result", "tool_use_id": tool_id, "content": content, "is_error": is_error},
        ]},
    })


def _result() -> str:
    return json.dumps({"type": "result", "subtype": "success"})


def _make_store(session_id: str | None = None, persisted: int = 0) -> MagicMock:
    store = MagicMock()
    store.get_chat = AsyncMock(return_value=Chat(id="chat-1", session_id=session_id))
    store.count_messages = AsyncMock(return_value=persisted)
    store.create_message = AsyncMock(return_value=SimpleNamespace(id="m1"))
    store.update_chat_session_id = AsyncMock(
        side_effect=lambda chat_id, sid: Chat(id=chat_id, session_id=sid),
    )
    return store


async def _started(store, bus=None, notify=None, grace=2.0) -> tuple[ChatSession, LocalChannelBus]:
    bus = bus or LocalChannelBus()
    session = ChatSession("chat-1", StreamOrchestrator(bus), store, notify=notify, empty_turn_grace=grace)
    await session.start()
    return session, bus


# ── start ──


@pytest.mark.asyncio
async def test_start_counts_assistant_turns():
    store = _make_store(persisted=2)
    session, _ = await _started(store)

    assert session.persisted_turns == 2
    assert session.chat.id == "chat-1"
    store.count_messages.assert_awaited_once_with("chat-1", role=MessageRole.ASSISTANT)


@pytest.mark.asyncio
async def test_start_missing_chat_raises():
    store = _make_store()
    store.get_chat = AsyncMock(return_value=None)
    session = ChatSession("chat-1", StreamOrchestrator(LocalChannelBus()), store)

    with pytest.raises(PersistenceError):
        await session.start()


# ── Completion ──


@pytest.mark.asyncio
async def test_completed_turn_is_persisted_once():
    store = _make_store()
    session, bus = await _started(store)
    await session.attach_process("p1")

    bus.publish_status("p1", "running")
    bus.publish_output("p1", "\n".join([_init(), _say("Hi"), _use("t1", "Bash"), _tool_result("t1", "ok"), _say("Done"), _result()]))
    bus.publish_status("p1", "completed", 0)
    bus.publish_status("p1", "completed", 0)
    await session.drain()

    store.create_message.assert_awaited_once()
    message = store.create_message.await_args.args[0]
    assert isinstance(message, NewMessage)
    assert message.chat_id == "chat-1"
    assert message.role is MessageRole.ASSISTANT
    assert message.content == "Hi\n\nDone"
    assert json.loads(message.tool_calls) == [{"id": "t1", "name": "Bash", "input": {}}]
    assert json.loads(message.tool_results) == [{"toolUseId": "t1", "content": "ok", "isError": False}]
    assert session.persisted_turns == 1
    # Released after persisting
    assert session.active_process_id is None


@pytest.mark.asyncio
async def test_completion_path_twice_persists_once():
    store = _make_store()
    session, bus = await _started(store)
    handle = await session.attach_process("p1")

    bus.publish_output("p1", _say("answer"))
    bus.publish_status("p1", "completed", 0)
    # Re-entrant notification for the same process id
    session._maybe_complete("p1")
    session._on_status("p1", handle.lifecycle)
    await session.drain()

    assert store.create_message.await_count == 1


@pytest.mark.asyncio
async def test_status_before_output_persists_when_events_arrive():
    store = _make_store()
    session, bus = await _started(store)
    await session.attach_process("p1")

    bus.publish_status("p1", "completed", 0)
    await session.drain()
    store.create_message.assert_not_awaited()

    bus.publish_output("p1", _say("late answer"))
    await session.drain()

    store.create_message.assert_awaited_once()
    assert store.create_message.await_args.args[0].content == "late answer"


@pytest.mark.asyncio
async def test_only_the_unpersisted_turn_is_saved_and_displayed():
    store = _make_store(persisted=1)
    session, bus = await _started(store)
    await session.attach_process("p1")

    bus.publish_output("p1", "\n".join([_say("old answer"), _result(), _say("new answer")]))
    assert session.display_items == [TextItem(content="new answer")]

    bus.publish_status("p1", "completed", 0)
    await session.drain()

    assert store.create_message.await_args.args[0].content == "new answer"
    assert session.persisted_turns == 2


@pytest.mark.asyncio
async def test_empty_turn_is_released_after_grace():
    store = _make_store(persisted=1)
    session, bus = await _started(store, grace=0)
    await session.attach_process("p1")

    bus.publish_output("p1", "\n".join([_say("old answer"), _result()]))
    bus.publish_status("p1", "completed", 0)
    await session.drain()

    store.create_message.assert_not_awaited()
    assert session.active_process_id is None
    assert not session.is_complete


@pytest.mark.asyncio
async def test_output_within_grace_is_still_persisted():
    store = _make_store(persisted=1)
    session, bus = await _started(store, grace=60)
    await session.attach_process("p1")

    bus.publish_output("p1", "\n".join([_say("old answer"), _result()]))
    bus.publish_status("p1", "completed", 0)
    assert session.active_process_id == "p1"

    bus.publish_output("p1", _say("late answer"))
    await session.drain()

    store.create_message.assert_awaited_once()
    assert store.create_message.await_args.args[0].content == "late answer"
    assert session.active_process_id is None


@pytest.mark.asyncio
async def test_persistence_failure_notifies_and_releases():
    store = _make_store()
    store.create_message = AsyncMock(side_effect=PersistenceError("chat-1", "disk full"))
    notify = MagicMock()
    session, bus = await _started(store, notify=notify)
    await session.attach_process("p1")

    bus.publish_output("p1", _say("answer"))
    bus.publish_status("p1", "failed", 1)
    await session.drain()

    notify.assert_called_once()
    assert notify.call_args.args[0] == "Failed to Save Response"
    assert session.persisted_turns == 0
    assert session.active_process_id is None


@pytest.mark.asyncio
async def test_new_process_after_completion_is_persisted_too():
    store = _make_store()
    session, bus = await _started(store)

    await session.attach_process("p1")
    bus.publish_output("p1", _say("first"))
    bus.publish_status("p1", "completed", 0)
    await session.drain()

    await session.attach_process("p2")
    bus.publish_output("p2", "\n".join([_say("first"), _result(), _say("second")]))
    bus.publish_status("p2", "completed", 0)
    await session.drain()

    contents = [call.args[0].content for call in store.create_message.await_args_list]
    assert contents == ["first", "second"]


# ── Session id ──


@pytest.mark.asyncio
async def test_session_id_saved_once():
    store = _make_store()
    session, bus = await _started(store)
    await session.attach_process("p1")

    bus.publish_output("p1", _init("sess-1"))
    bus.publish_output("p1", _init("sess-2"))
    await session.drain()
    await session.attach_process("p2")
    bus.publish_output("p2", _init("sess-3"))
    await session.drain()

    store.update_chat_session_id.assert_awaited_once_with("chat-1", "sess-1")
    assert session.chat.session_id == "sess-1"


@pytest.mark.asyncio
async def test_session_id_not_saved_when_chat_has_one():
    store = _make_store(session_id="existing")
    session, bus = await _started(store)
    await session.attach_process("p1")

    bus.publish_output("p1", _init("fresh"))
    await session.drain()

    store.update_chat_session_id.assert_not_awaited()


@pytest.mark.asyncio
async def test_session_id_not_saved_before_chat_is_loaded():
    store = _make_store()
    bus = LocalChannelBus()
    session = ChatSession("chat-1", StreamOrchestrator(bus), store)
    await session.attach_process("p1")

    bus.publish_output("p1", _init("sess-1"))
    await session.drain()

    store.update_chat_session_id.assert_not_awaited()
    assert session.handle.session_id == "sess-1"


@pytest.mark.asyncio
async def test_session_id_retried_after_failure():
    store = _make_store()
    store.update_chat_session_id = AsyncMock(side_effect=[OSError("locked"), Chat(id="chat-1", session_id="s2")])
    session, bus = await _started(store)

    await session.attach_process("p1")
    bus.publish_output("p1", _init("s1"))
    await session.drain()
    await session.attach_process("p2")
    bus.publish_output("p2", _init("s2"))
    await session.drain()

    assert store.update_chat_session_id.await_count == 2
    assert session.chat.session_id == "s2"


# ── Permission replies ──


@pytest.mark.asyncio
async def test_approve_and_deny_write_to_stdin():
    store = _make_store()
    session, bus = await _started(store)
    await session.attach_process("p1")

    bus.publish_output("p1", "Allow Claude to write to /tmp/out.txt? [y/n]")
    assert session.permission_request.file_path == "/tmp/out.txt"
    await session.approve_permission()
    assert session.permission_request is None

    bus.publish_output("p1", "Allow Bash? (y/n)")
    await session.deny_permission()

    assert bus.sent_input["p1"] == ["y\n", "n\n"]
    assert session.permission_request is None


@pytest.mark.asyncio
async def test_permission_send_failure_still_clears():
    store = _make_store()
    bus = LocalChannelBus()
    notify = MagicMock()
    session, _ = await _started(store, bus=bus, notify=notify)
    await session.attach_process("p1")
    bus.publish_output("p1", "Allow Bash? (y/n)")

    bus.close()
    await session.approve_permission()

    assert session.permission_request is None
    notify.assert_called_once_with("Permission Error", "Failed to send permission response.")


@pytest.mark.asyncio
async def test_permission_reply_without_process_is_noop():
    store = _make_store()
    session, bus = await _started(store)

    await session.deny_permission()

    assert bus.sent_input == {}


# ── Notifications ──


@pytest.mark.asyncio
async def test_tool_errors_are_notified():
    notify = MagicMock()
    session, bus = await _started(_make_store(), notify=notify)
    await session.attach_process("p1")

    bus.publish_output("p1", "\n".join([_use("t1", "Bash"), _tool_result("t1", "command not found", is_error=True)]))

    notify.assert_called_once_with("Tool Error", "command not found")


@pytest.mark.asyncio
async def test_replayed_tool_errors_are_not_notified_again():
    notify = MagicMock()
    session, bus = await _started(_make_store(persisted=1), notify=notify)
    await session.attach_process("p1")

    bus.publish_output("p1", "\n".join([
        _use("t1", "Bash"),
        _tool_result("t1", "old failure", is_error=True),
        _result(),
        _say("new answer"),
    ]))

    notify.assert_not_called()
    assert session.display_items == [TextItem(content="new answer")]


@pytest.mark.asyncio
async def test_tool_errors_in_resumed_turn_are_notified():
    notify = MagicMock()
    session, bus = await _started(_make_store(persisted=1), notify=notify)
    await session.attach_process("p1")

    bus.publish_output("p1", "\n".join([
        _use("t1", "Bash"),
        _tool_result("t1", "old failure", is_error=True),
        _result(),
        _use("t2", "Bash"),
        _tool_result("t2", "new failure", is_error=True),
    ]))

    notify.assert_called_once_with("Tool Error", "new failure")


@pytest.mark.asyncio
async def test_failing_notify_does_not_break_stream():
    notify = MagicMock(side_effect=RuntimeError("toast failed"))
    session, bus = await _started(_make_store(), notify=notify)
    await session.attach_process("p1")

    bus.publish_output("p1", "\n".join([_use("t1", "Bash"), _tool_result("t1", "boom", is_error=True), _say("after")]))

    assert len(session.events) == 3


@pytest.mark.asyncio
async def test_close_detaches():
    session, bus = await _started(_make_store())
    await session.attach_process("p1")

    await session.close()

    assert session.active_process_id is None
    assert bus.subscriber_count("process-output-p1") == 0
