"""In-process channel bus implementing the Transport interface.

Publishers push notification dicts onto named channels; subscribers
receive them synchronously in publish order. Used by the replay CLI
and tests, and as the local transport when the subprocess runs in the
same process tree.
"""
from __future__ import annotations

import logging
from typing import Any

from agentstream.adapters.transport import (
    ChannelHandler,
    Transport,
    Unsubscribe,
    event_channel,
    output_channel,
    status_channel,
)
from agentstream.engine.errors import SubscriptionError

logger = logging.getLogger(__name__)


class LocalChannelBus(Transport):
    """Synchronous in-process pub/sub over named channels."""

    def __init__(self, *, typed_events: bool = False) -> None:
        self._handlers: dict[str, list[ChannelHandler]] = {}
        self._closed = False
        self._typed_events = typed_events
        # Input written to each process, in order
        self.sent_input: dict[str, list[str]] = {}

    @property
    def supports_typed_events(self) -> bool:
        return self._typed_events

    async def subscribe(self, channel: str, handler: ChannelHandler) -> Unsubscribe:
        if self._closed:
            raise SubscriptionError(channel, "bus is closed")
        handlers = self._handlers.setdefault(channel, [])
        handlers.append(handler)
        logger.debug("Subscribed to %s (%d handlers)", channel, len(handlers))

        def _unsubscribe() -> None:
            current = self._handlers.get(channel)
            if current is None:
                return
            try:
                current.remove(handler)
            except ValueError:
                return
            if not current:
                del self._handlers[channel]
            logger.debug("Unsubscribed from %s", channel)

        return _unsubscribe

    async def send_input(self, process_id: str, data: str) -> None:
        if self._closed:
            raise RuntimeError("bus is closed")
        self.sent_input.setdefault(process_id, []).append(data)
        logger.debug("Input for %s: %r", process_id, data)

    def publish(self, channel: str, payload: dict[str, Any]) -> int:
        """Deliver a payload to every handler on ``channel``.

        Returns the number of handlers reached.
        """
        if self._closed:
            return 0
        delivered = 0
        # Copy: handlers may unsubscribe while being called
        for handler in list(self._handlers.get(channel, ())):
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception("Handler for %s failed", channel)
        return delivered

    def publish_output(
        self,
        process_id: str,
        content: str,
        output_type: str = "stdout",
        timestamp: str = "",
    ) -> int:
        return self.publish(output_channel(process_id), {
            "content": content,
            "outputType": output_type,
            "timestamp": timestamp,
        })

    def publish_status(
        self,
        process_id: str,
        status: str,
        exit_code: int | None = None,
    ) -> int:
        return self.publish(status_channel(process_id), {
            "status": status,
            "exitCode": exit_code,
        })

    def publish_event(self, process_id: str, event: dict[str, Any]) -> int:
        return self.publish(event_channel(process_id), event)

    def subscriber_count(self, channel: str) -> int:
        return len(self._handlers.get(channel, ()))

    def close(self) -> None:
        """Stop delivering permanently."""
        self._closed = True

    def reset(self) -> None:
        """Drop all subscriptions and recorded input, and re-open the bus."""
        self._handlers.clear()
        self.sent_input.clear()
        self._closed = False
