"""Adapters package - Bridge between the stream core and its collaborators.

This package contains the transport interface, the in-process channel
bus, the per-process stream orchestrator and the chat session controller
that connects a stream to message persistence.
"""
from __future__ import annotations

__all__ = [
    "Transport",
    "LocalChannelBus",
    "StreamOrchestrator",
    "ProcessStreamSession",
    "StreamListener",
    "ChatSession",
]

from agentstream.adapters.transport import Transport
from agentstream.adapters.event_bus import LocalChannelBus
from agentstream.adapters.orchestrator import (
    ProcessStreamSession,
    StreamListener,
    StreamOrchestrator,
)
from agentstream.adapters.chat_session import ChatSession
