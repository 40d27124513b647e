"""Per-process stream orchestration.

StreamOrchestrator subscribes to a process's output, status and typed
event channels and folds every notification into a SessionAccumulator:
events and raw lines are appended in delivery order, status goes to the
LifecycleTracker, permission prompts replace the outstanding request.

Each accumulator carries an ``alive`` flag that every channel handler
checks before mutating. Detaching flips the flag first, so deliveries
already in flight for an old process id are dropped even when the
transport cannot cancel them.

ProcessStreamSession wraps the orchestrator for callers that follow a
single "active" process id that changes over time.
"""
from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from agentstream.adapters.transport import (
    Transport,
    Unsubscribe,
    event_channel,
    output_channel,
    status_channel,
)
from agentstream.engine.classifier import classify_line
from agentstream.engine.config import StreamConfig, fire_callback
from agentstream.engine.events import Event, dict_to_event, is_event
from agentstream.engine.lifecycle import LifecycleTracker
from agentstream.engine.models import (
    OutputKind,
    OutputLine,
    PermissionRequest,
    ProcessLifecycle,
    ProcessStatus,
)
from agentstream.engine.projector import DisplayItem, project_display_items

logger = logging.getLogger(__name__)


@dataclass
class StreamListener:
    """Optional callbacks fired as a process's state changes.

    Every callback receives the process id first. Exceptions raised by
    a callback are logged and swallowed.
    """
    on_event: Callable[[str, Event], None] | None = None
    on_output: Callable[[str, OutputLine], None] | None = None
    on_status: Callable[[str, ProcessLifecycle], None] | None = None
    on_session_id: Callable[[str, str], None] | None = None
    on_permission_request: Callable[[str, PermissionRequest], None] | None = None


@dataclass(frozen=True)
class StreamSnapshot:
    """Immutable view of one process's accumulated state."""
    process_id: str
    events: tuple[Event, ...] = ()
    output: tuple[OutputLine, ...] = ()
    lifecycle: ProcessLifecycle = field(default_factory=ProcessLifecycle)
    permission_request: PermissionRequest | None = None

    @property
    def raw_text(self) -> str:
        return "\n".join(line.content for line in self.output)

    @property
    def is_running(self) -> bool:
        return self.lifecycle.is_running

    @property
    def is_complete(self) -> bool:
        return self.lifecycle.is_terminal

    @property
    def has_content(self) -> bool:
        return bool(self.events or self.output)

    def display_items(self) -> list[DisplayItem]:
        return project_display_items(self.events)


class SessionAccumulator:
    """Mutable per-process state. Owned exclusively by the orchestrator."""

    def __init__(self, process_id: str, raw_output_limit: int | None = None) -> None:
        self.process_id = process_id
        self.events: list[Event] = []
        self.output: deque[OutputLine] = deque(maxlen=raw_output_limit)
        self.tracker = LifecycleTracker(process_id)
        self.permission_request: PermissionRequest | None = None
        self.alive = True
        # Set once the typed event channel is subscribed
        self.typed_events = False

    def snapshot(self) -> StreamSnapshot:
        return StreamSnapshot(
            process_id=self.process_id,
            events=tuple(self.events),
            output=tuple(self.output),
            lifecycle=self.tracker.snapshot(),
            permission_request=self.permission_request,
        )


class ObservationHandle:
    """Caller-side handle for one observed process id."""

    def __init__(self, accumulator: SessionAccumulator, listener: StreamListener) -> None:
        self._accumulator = accumulator
        self._listener = listener
        self._unsubscribers: list[Unsubscribe] = []
        self.subscription_error: Exception | None = None

    @property
    def process_id(self) -> str:
        return self._accumulator.process_id

    @property
    def active(self) -> bool:
        return self._accumulator.alive

    def snapshot(self) -> StreamSnapshot:
        return self._accumulator.snapshot()

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._accumulator.events)

    @property
    def output(self) -> tuple[OutputLine, ...]:
        return tuple(self._accumulator.output)

    @property
    def raw_text(self) -> str:
        return "\n".join(line.content for line in self._accumulator.output)

    @property
    def lifecycle(self) -> ProcessLifecycle:
        return self._accumulator.tracker.snapshot()

    @property
    def status(self) -> ProcessStatus:
        return self._accumulator.tracker.status

    @property
    def exit_code(self) -> int | None:
        return self._accumulator.tracker.exit_code

    @property
    def session_id(self) -> str | None:
        return self._accumulator.tracker.session_id

    @property
    def permission_request(self) -> PermissionRequest | None:
        return self._accumulator.permission_request

    @property
    def is_running(self) -> bool:
        return self._accumulator.tracker.snapshot().is_running

    @property
    def is_complete(self) -> bool:
        return self._accumulator.tracker.is_terminal

    @property
    def has_content(self) -> bool:
        return bool(self._accumulator.events or self._accumulator.output)

    def display_items(self) -> list[DisplayItem]:
        return project_display_items(tuple(self._accumulator.events))


class StreamOrchestrator:
    """Owns one accumulator per observed process id."""

    def __init__(
        self,
        transport: Transport,
        config: StreamConfig | None = None,
        listener: StreamListener | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or StreamConfig()
        self._listener = listener or StreamListener()
        self._handles: dict[str, ObservationHandle] = {}

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def observed_ids(self) -> list[str]:
        return list(self._handles)

    def get(self, process_id: str) -> ObservationHandle | None:
        return self._handles.get(process_id)

    @property
    def _wants_typed_events(self) -> bool:
        return self._config.prefer_typed_events and self._transport.supports_typed_events

    # ── subscription lifecycle ──

    async def observe(
        self,
        process_id: str,
        listener: StreamListener | None = None,
    ) -> ObservationHandle:
        """Start accumulating output for ``process_id`` from a clean slate.

        Subscription failures are logged and recorded on the handle's
        ``subscription_error``; the lifecycle stays at ``starting``.
        """
        previous = self._handles.get(process_id)
        if previous is not None:
            logger.debug("Re-observing %s, discarding previous accumulator", process_id)
            self.stop_observing(previous)

        accumulator = SessionAccumulator(process_id, self._config.raw_output_maxlen)
        handle = ObservationHandle(accumulator, listener or self._listener)
        self._handles[process_id] = handle
        logger.info("Observing process %s", process_id)

        channels: list[tuple[str, Callable[[dict[str, Any]], None]]] = []
        typed_channel = event_channel(process_id) if self._wants_typed_events else None
        if typed_channel is not None:
            # Subscribed first so output handling knows which path owns events
            channels.append((typed_channel, lambda p: self._on_typed_event(handle, p)))
        channels.append((output_channel(process_id), lambda p: self._on_output(handle, p)))
        channels.append((status_channel(process_id), lambda p: self._on_status(handle, p)))

        for channel, handler in channels:
            try:
                unsubscribe = await self._transport.subscribe(channel, handler)
            except Exception as e:
                logger.error("Failed to subscribe to %s: %s", channel, e)
                if handle.subscription_error is None:
                    handle.subscription_error = e
                continue
            if not accumulator.alive:
                # Detached while the subscription was being set up
                self._safe_unsubscribe(channel, unsubscribe)
                continue
            handle._unsubscribers.append(unsubscribe)
            if channel == typed_channel:
                accumulator.typed_events = True

        if typed_channel is not None and accumulator.alive and not accumulator.typed_events:
            logger.warning("Typed events unavailable for %s, parsing events from output", process_id)
        return handle

    def stop_observing(self, handle: ObservationHandle | None) -> None:
        """Detach from the process. Safe to call more than once."""
        if handle is None:
            return
        accumulator = handle._accumulator
        was_alive = accumulator.alive
        accumulator.alive = False
        unsubscribers, handle._unsubscribers = handle._unsubscribers, []
        for unsubscribe in unsubscribers:
            self._safe_unsubscribe(handle.process_id, unsubscribe)
        if self._handles.get(handle.process_id) is handle:
            del self._handles[handle.process_id]
        if was_alive:
            logger.info("Stopped observing process %s", handle.process_id)

    def clear_history(self, handle: ObservationHandle) -> None:
        """Empty events and raw output; lifecycle and session id are kept."""
        accumulator = handle._accumulator
        if not accumulator.alive:
            return
        accumulator.events.clear()
        accumulator.output.clear()
        logger.debug("Cleared history for %s", handle.process_id)

    def clear_permission_request(self, handle: ObservationHandle) -> None:
        accumulator = handle._accumulator
        if not accumulator.alive:
            return
        accumulator.permission_request = None

    def close(self) -> None:
        """Stop observing every process."""
        for handle in list(self._handles.values()):
            self.stop_observing(handle)

    @staticmethod
    def _safe_unsubscribe(label: str, unsubscribe: Unsubscribe) -> None:
        try:
            unsubscribe()
        except Exception:
            logger.exception("Failed to unsubscribe from %s", label)

    # ── channel handlers ──

    def _on_output(self, handle: ObservationHandle, payload: dict[str, Any]) -> None:
        accumulator = handle._accumulator
        if not accumulator.alive:
            return
        if not isinstance(payload, dict):
            logger.debug("Ignoring non-dict output payload for %s", handle.process_id)
            return
        content = payload.get("content")
        if not isinstance(content, str):
            return
        kind = OutputKind.parse(payload.get("outputType"))
        timestamp = payload.get("timestamp") or ""

        # Split on "\n" only; U+2028 and NEL are legal inside JSON strings
        for line in content.split("\n"):
            item = classify_line(
                line,
                process_id=handle.process_id,
                kind=kind,
                timestamp=timestamp,
            )
            if item is None:
                continue
            if is_event(item):
                if accumulator.typed_events:
                    # The typed event channel already delivers this one
                    continue
                self._append_event(handle, item)  # type: ignore[arg-type]
            elif isinstance(item, PermissionRequest):
                self._set_permission_request(handle, item)
            else:
                self._append_output(handle, item)

    def _on_status(self, handle: ObservationHandle, payload: dict[str, Any]) -> None:
        accumulator = handle._accumulator
        if not accumulator.alive:
            return
        if not isinstance(payload, dict):
            logger.debug("Ignoring non-dict status payload for %s", handle.process_id)
            return
        changed = accumulator.tracker.apply_status(
            payload.get("status"), payload.get("exitCode"),
        )
        if changed:
            fire_callback(
                handle._listener.on_status,
                handle.process_id,
                accumulator.tracker.snapshot(),
            )

    def _on_typed_event(self, handle: ObservationHandle, payload: dict[str, Any]) -> None:
        if not handle._accumulator.alive:
            return
        event = dict_to_event(payload)
        if event is None:
            try:
                content = json.dumps(payload, ensure_ascii=False)
            except (TypeError, ValueError):
                content = str(payload)
            self._append_output(handle, OutputLine.now(content))
            return
        self._append_event(handle, event)

    # ── mutations ──

    def _append_event(self, handle: ObservationHandle, event: Event) -> None:
        accumulator = handle._accumulator
        accumulator.events.append(event)
        if accumulator.tracker.observe_event(event):
            fire_callback(
                handle._listener.on_session_id,
                handle.process_id,
                accumulator.tracker.session_id,
            )
        fire_callback(handle._listener.on_event, handle.process_id, event)

    def _append_output(self, handle: ObservationHandle, line: OutputLine) -> None:
        handle._accumulator.output.append(line)
        fire_callback(handle._listener.on_output, handle.process_id, line)

    def _set_permission_request(
        self, handle: ObservationHandle, request: PermissionRequest,
    ) -> None:
        handle._accumulator.permission_request = request
        logger.info(
            "Permission requested by %s: %s %s",
            handle.process_id, request.tool_name, request.file_path or "",
        )
        fire_callback(handle._listener.on_permission_request, handle.process_id, request)


class ProcessStreamSession:
    """Follows a single active process id.

    Every change of id, including from one non-null id to another,
    detaches the old accumulator and starts a clean one.
    """

    def __init__(
        self,
        orchestrator: StreamOrchestrator,
        listener: StreamListener | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._listener = listener
        self._process_id: str | None = None
        self._handle: ObservationHandle | None = None
        self._generation = 0

    @property
    def process_id(self) -> str | None:
        return self._process_id

    @property
    def handle(self) -> ObservationHandle | None:
        return self._handle

    async def set_process(self, process_id: str | None) -> ObservationHandle | None:
        if (
            process_id == self._process_id
            and self._handle is not None
            and self._handle.active
        ):
            return self._handle

        self._generation += 1
        generation = self._generation
        self._orchestrator.stop_observing(self._handle)
        self._handle = None
        self._process_id = process_id
        if not process_id:
            return None

        handle = await self._orchestrator.observe(process_id, self._listener)
        if generation != self._generation:
            # Superseded by a newer set_process() while subscribing
            self._orchestrator.stop_observing(handle)
            return None
        self._handle = handle
        return handle

    def clear_history(self) -> None:
        if self._handle is not None:
            self._orchestrator.clear_history(self._handle)

    def clear_permission_request(self) -> None:
        if self._handle is not None:
            self._orchestrator.clear_permission_request(self._handle)

    def snapshot(self) -> StreamSnapshot | None:
        return self._handle.snapshot() if self._handle is not None else None

    def close(self) -> None:
        self._generation += 1
        self._orchestrator.stop_observing(self._handle)
        self._handle = None
        self._process_id = None
