"""Exception hierarchy for the stream processor.

Most malformed input never raises: it degrades to raw output. These
exceptions cover the failures that do need a name.
"""
from __future__ import annotations


class StreamProcessingError(Exception):
    """Base exception for all stream processing errors."""


class SubscriptionError(StreamProcessingError):
    """The transport could not establish a channel subscription."""
    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Failed to subscribe to {channel}: {reason}")


class InvalidTransitionError(StreamProcessingError, ValueError):
    """Lifecycle transition not allowed from the current status."""
    def __init__(self, current: str, target: str, allowed: list[str]):
        self.current = current
        self.target = target
        self.allowed = allowed
        allowed_str = ", ".join(allowed) or "none (terminal)"
        super().__init__(
            f"Invalid status transition: {current} -> {target}. "
            f"Allowed from {current}: {allowed_str}"
        )


class PersistenceError(StreamProcessingError):
    """The message store rejected a read or write."""
    def __init__(self, chat_id: str, reason: str):
        self.chat_id = chat_id
        self.reason = reason
        super().__init__(f"Persistence failed for chat {chat_id}: {reason}")


class ConfigError(StreamProcessingError):
    """A configuration file could not be loaded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid configuration in {path}: {reason}")
