"""Abstract base for the output transport.

A transport delivers subprocess output and status notifications over
named channels (local IPC, a websocket, an in-process bus) and carries
input back to the subprocess. The orchestrator only ever talks to this
interface.

Channels per process id:
    process-output-{id}   {"content", "outputType", "timestamp"}
    process-status-{id}   {"status", "exitCode"?}
    claude-event-{id}     already-typed stream-json event dicts
"""
from __future__ import annotations

import abc
from collections.abc import Callable
from typing import Any

# Synchronous per-notification handler. Handlers must not block.
ChannelHandler = Callable[[dict[str, Any]], None]

# Returned by subscribe(); calling it detaches the handler. Idempotent.
Unsubscribe = Callable[[], None]

OUTPUT_CHANNEL = "process-output-{process_id}"
STATUS_CHANNEL = "process-status-{process_id}"
EVENT_CHANNEL = "claude-event-{process_id}"


def output_channel(process_id: str) -> str:
    return OUTPUT_CHANNEL.format(process_id=process_id)


def status_channel(process_id: str) -> str:
    return STATUS_CHANNEL.format(process_id=process_id)


def event_channel(process_id: str) -> str:
    return EVENT_CHANNEL.format(process_id=process_id)


class Transport(abc.ABC):
    """Abstract publish/subscribe transport."""

    @abc.abstractmethod
    async def subscribe(self, channel: str, handler: ChannelHandler) -> Unsubscribe:
        """Attach a handler to a channel.

        Raises SubscriptionError when the subscription cannot be
        established.
        """

    @abc.abstractmethod
    async def send_input(self, process_id: str, data: str) -> None:
        """Write raw input to the subprocess's stdin."""

    @property
    def supports_typed_events(self) -> bool:
        """Whether the event channel delivers pre-parsed events.

        When True, the event channel is authoritative and events parsed
        from output lines are ignored.

        Default: False.
        """
        return False
