"""Chat and message models for the persistence collaborator."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from agentstream.engine.turns import TurnContent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Chat:
    id: str
    title: str = ""
    # Resumable session id of the agent subprocess, once known
    session_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class NewMessage:
    """Payload handed to MessageStore.create_message().

    tool_calls and tool_results are JSON-encoded lists, or None when
    the turn had none.
    """
    chat_id: str
    role: MessageRole
    content: str
    tool_calls: str | None = None
    tool_results: str | None = None

    @classmethod
    def from_turn(cls, chat_id: str, turn: TurnContent) -> NewMessage:
        """Build the assistant message for a completed turn."""
        tool_calls = [asdict(call) for call in turn.tool_calls]
        tool_results = []
        for result in turn.tool_results:
            d: dict[str, Any] = {
                "toolUseId": result.tool_use_id,
                "content": result.content,
            }
            if result.is_error is not None:
                d["isError"] = result.is_error
            tool_results.append(d)
        return cls(
            chat_id=chat_id,
            role=MessageRole.ASSISTANT,
            content=turn.text_content,
            tool_calls=json.dumps(tool_calls) if tool_calls else None,
            tool_results=json.dumps(tool_results) if tool_results else None,
        )


@dataclass
class Message:
    chat_id: str
    role: MessageRole
    content: str
    tool_calls: str | None = None
    tool_results: str | None = None
    id: str = field(default_factory=_gen_id)
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_new(cls, new: NewMessage) -> Message:
        return cls(
            chat_id=new.chat_id,
            role=new.role,
            content=new.content,
            tool_calls=new.tool_calls,
            tool_results=new.tool_results,
        )
