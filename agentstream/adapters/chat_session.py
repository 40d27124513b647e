"""Chat-level controller on top of the stream orchestrator.

Binds one chat to its currently running agent process and turns stream
state into side effects:

- persists the assistant turn once the process finishes (at most once
  per process id)
- stores the resumable session id on the chat the first time it is seen
- answers permission prompts by writing y/n to the subprocess
- exposes the current-turn display items, so history replayed by a
  resumed session is never shown as new output
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from agentstream.adapters.orchestrator import (
    ObservationHandle,
    ProcessStreamSession,
    StreamListener,
    StreamOrchestrator,
)
from agentstream.engine.config import NotifyCallback, fire_callback
from agentstream.engine.errors import PersistenceError
from agentstream.engine.events import Event, UserEvent
from agentstream.engine.models import OutputLine, PermissionRequest, ProcessLifecycle
from agentstream.engine.projector import DisplayItem, project_display_items
from agentstream.engine.turns import extract_turn_content, filter_to_current_turn
from agentstream.shared.models.message import Chat, MessageRole, NewMessage
from agentstream.shared.services.message_store import MessageStore

logger = logging.getLogger(__name__)

APPROVE_INPUT = "y\n"
DENY_INPUT = "n\n"


class ChatSession:
    """Streams one chat's agent process and persists its turns."""

    def __init__(
        self,
        chat_id: str,
        orchestrator: StreamOrchestrator,
        store: MessageStore,
        *,
        notify: NotifyCallback | None = None,
        empty_turn_grace: float = 2.0,
    ) -> None:
        """``empty_turn_grace`` is how long, in seconds, a finished process
        with nothing new to persist stays attached waiting for late output.
        """
        self._chat_id = chat_id
        self._empty_turn_grace = empty_turn_grace
        self._orchestrator = orchestrator
        self._store = store
        self._notify = notify
        self._stream = ProcessStreamSession(
            orchestrator,
            StreamListener(
                on_event=self._on_event,
                on_status=self._on_status,
                on_session_id=self._on_session_id,
            ),
        )
        self._chat: Chat | None = None
        self._persisted_turns = 0
        # Completion guard: process id whose turn was already handed to the store
        self._saved_process_id: str | None = None
        self._session_id_pending = False
        self._tasks: set[asyncio.Task[Any]] = set()
        self._pending_release: asyncio.Task[None] | None = None

    # ── state ──

    @property
    def chat_id(self) -> str:
        return self._chat_id

    @property
    def chat(self) -> Chat | None:
        return self._chat

    @property
    def persisted_turns(self) -> int:
        """Number of assistant messages already stored for this chat."""
        return self._persisted_turns

    @property
    def active_process_id(self) -> str | None:
        return self._stream.process_id

    @property
    def handle(self) -> ObservationHandle | None:
        return self._stream.handle

    @property
    def events(self) -> tuple[Event, ...]:
        handle = self._stream.handle
        return handle.events if handle is not None else ()

    @property
    def raw_output(self) -> tuple[OutputLine, ...]:
        handle = self._stream.handle
        return handle.output if handle is not None else ()

    @property
    def current_turn_events(self) -> list[Any]:
        return filter_to_current_turn(self.events, self._persisted_turns)

    @property
    def display_items(self) -> list[DisplayItem]:
        return project_display_items(self.current_turn_events)

    @property
    def permission_request(self) -> PermissionRequest | None:
        handle = self._stream.handle
        return handle.permission_request if handle is not None else None

    @property
    def is_running(self) -> bool:
        handle = self._stream.handle
        return handle is not None and handle.is_running

    @property
    def is_complete(self) -> bool:
        handle = self._stream.handle
        return handle is not None and handle.is_complete

    # ── lifecycle ──

    async def start(self) -> Chat:
        """Load the chat and count its persisted assistant turns."""
        chat = await self._store.get_chat(self._chat_id)
        if chat is None:
            raise PersistenceError(self._chat_id, "chat not found")
        self._chat = chat
        self._persisted_turns = await self._store.count_messages(
            self._chat_id, role=MessageRole.ASSISTANT,
        )
        logger.debug(
            "Chat %s loaded: %d persisted assistant turns, session_id=%s",
            self._chat_id, self._persisted_turns, chat.session_id,
        )
        return chat

    async def attach_process(self, process_id: str) -> ObservationHandle | None:
        """Start streaming the agent process running this chat's prompt."""
        logger.info("Chat %s attached to process %s", self._chat_id, process_id)
        self._cancel_pending_release()
        handle = await self._stream.set_process(process_id)
        if handle is not None and handle.subscription_error is not None:
            fire_callback(
                self._notify,
                "Connection Error",
                f"Could not subscribe to process output: {handle.subscription_error}",
            )
        return handle

    async def detach(self) -> None:
        self._cancel_pending_release()
        await self._stream.set_process(None)

    async def drain(self) -> None:
        """Wait for pending persistence work."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._cancel_pending_release()
        self._stream.close()
        await self.drain()

    # ── permission prompts ──

    async def approve_permission(self) -> None:
        await self._respond_to_permission(APPROVE_INPUT, "approved")

    async def deny_permission(self) -> None:
        await self._respond_to_permission(DENY_INPUT, "denied")

    async def _respond_to_permission(self, data: str, verb: str) -> None:
        process_id = self._stream.process_id
        if not process_id:
            logger.debug("Permission response aborted: no active process")
            return
        request = self.permission_request
        tool_name = request.tool_name if request is not None else None
        try:
            await self._orchestrator.transport.send_input(process_id, data)
        except Exception as e:
            logger.error(
                "Failed to send permission response for %s (%s): %s",
                process_id, tool_name, e,
            )
            fire_callback(self._notify, "Permission Error", "Failed to send permission response.")
        else:
            logger.info("Permission %s for %s (%s)", verb, process_id, tool_name)
        self._stream.clear_permission_request()

    # ── stream callbacks ──

    def _on_event(self, process_id: str, event: Event) -> None:
        if isinstance(event, UserEvent) and self._in_current_turn(process_id, event):
            for block in event.content_blocks:
                if block.is_error:
                    fire_callback(self._notify, "Tool Error", block.content or "Tool call failed")
        self._maybe_complete(process_id)

    def _on_status(self, process_id: str, lifecycle: ProcessLifecycle) -> None:
        logger.debug(
            "Process %s for chat %s is %s (exit_code=%s)",
            process_id, self._chat_id, lifecycle.status.value, lifecycle.exit_code,
        )
        if lifecycle.is_terminal:
            self._maybe_complete(process_id)

    def _on_session_id(self, process_id: str, session_id: str) -> None:
        if self._chat is None:
            logger.debug("Chat %s not loaded; session id %s not saved", self._chat_id, session_id)
            return
        if self._chat.session_id:
            return
        if self._session_id_pending:
            return
        self._session_id_pending = True
        self._spawn(self._save_session_id(session_id))

    def _in_current_turn(self, process_id: str, event: Event) -> bool:
        handle = self._stream.handle
        if handle is None or handle.process_id != process_id:
            return False
        current = filter_to_current_turn(handle.events, self._persisted_turns)
        # Callbacks fire right after the append, so the event is the newest one
        return bool(current) and current[-1] is event

    # ── side effects ──

    def _maybe_complete(self, process_id: str) -> None:
        handle = self._stream.handle
        if handle is None or handle.process_id != process_id:
            return
        if not handle.is_complete or not handle.events:
            return
        if self._saved_process_id == process_id:
            logger.debug("Turn for process %s already persisted", process_id)
            return

        self._cancel_pending_release()
        turn = extract_turn_content(
            filter_to_current_turn(handle.events, self._persisted_turns),
        )
        if turn.is_empty:
            # Output may still be in flight on the other channel
            logger.debug("Process %s completed with no new content yet", process_id)
            self._pending_release = self._spawn(
                self._release_empty_turn(process_id, len(handle.events)),
            )
            return

        self._saved_process_id = process_id
        logger.debug(
            "Persisting assistant response for chat %s (process %s): "
            "%d chars, %d tool calls, %d tool results",
            self._chat_id, process_id, len(turn.text_content),
            len(turn.tool_calls), len(turn.tool_results),
        )
        self._spawn(self._persist_turn(process_id, NewMessage.from_turn(self._chat_id, turn)))

    async def _persist_turn(self, process_id: str, message: NewMessage) -> None:
        try:
            await self._store.create_message(message)
        except Exception as e:
            logger.error(
                "Failed to persist assistant response for chat %s (process %s): %s",
                self._chat_id, process_id, e,
            )
            fire_callback(
                self._notify,
                "Failed to Save Response",
                "The assistant response could not be saved. Please try again.",
            )
        else:
            self._persisted_turns += 1
            logger.info(
                "Assistant response persisted for chat %s (process %s)",
                self._chat_id, process_id,
            )
        finally:
            if self._stream.process_id == process_id:
                self._stream.close()

    async def _save_session_id(self, session_id: str) -> None:
        try:
            self._chat = await self._store.update_chat_session_id(self._chat_id, session_id)
        except Exception as e:
            logger.error(
                "Failed to save session id %s for chat %s: %s",
                session_id, self._chat_id, e,
            )
        else:
            logger.info("Session id %s saved for chat %s", session_id, self._chat_id)
        finally:
            self._session_id_pending = False

    async def _release_empty_turn(self, process_id: str, event_count: int) -> None:
        await asyncio.sleep(self._empty_turn_grace)
        handle = self._stream.handle
        if handle is None or handle.process_id != process_id:
            return
        if len(handle.events) != event_count or self._saved_process_id == process_id:
            return
        logger.info(
            "Process %s for chat %s finished without a new turn; releasing",
            process_id, self._chat_id,
        )
        self._stream.close()

    def _cancel_pending_release(self) -> None:
        task, self._pending_release = self._pending_release, None
        if task is not None and not task.done():
            task.cancel()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.error("No running event loop; dropping background work for chat %s", self._chat_id)
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
