"""Structured events emitted by the agent subprocess.

Each stream-json line with a recognized ``type`` is parsed into one of
four dataclasses. ``Event`` is the closed union of them; consumers
dispatch with isinstance checks and end with ``assert_never`` so a new
variant shows up as a type error rather than a silent miss.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextBlock:
    text: str = ""
    type: str = "text"


@dataclass(frozen=True)
class ToolUseBlock:
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None
    type: str = "tool_use"


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str | None = None
    content: str = ""
    is_error: bool | None = None
    type: str = "tool_result"


AssistantBlock = Union[TextBlock, ToolUseBlock]


@dataclass(frozen=True)
class SystemEvent:
    """Meta/control notification. subtype "init" carries the session id."""
    subtype: str = ""
    session_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    type: str = "system"


@dataclass(frozen=True)
class AssistantEvent:
    content_blocks: tuple[AssistantBlock, ...] = ()
    type: str = "assistant"


@dataclass(frozen=True)
class UserEvent:
    """Tool outcomes fed back to the agent."""
    content_blocks: tuple[ToolResultBlock, ...] = ()
    type: str = "user"


@dataclass(frozen=True)
class ResultEvent:
    """Terminal marker for one response turn."""
    subtype: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    type: str = "result"


Event = Union[SystemEvent, AssistantEvent, UserEvent, ResultEvent]

EVENT_TYPES: tuple[type, ...] = (SystemEvent, AssistantEvent, UserEvent, ResultEvent)


def is_event(value: object) -> bool:
    return isinstance(value, EVENT_TYPES)


# ── Decoding ──


def _as_text(value: Any) -> str:
    """Flatten tool result content into display text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: list[str] = []
        for item in value:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(part for part in parts if part)
    if isinstance(value, dict) and isinstance(value.get("text"), str):
        return value["text"]
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        return str(value)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _message_blocks(data: dict[str, Any]) -> list[Any]:
    message = data.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if isinstance(content, list):
        return content
    if isinstance(content, str) and content:
        return [{"type": "text", "text": content}]
    return []


def _parse_assistant(data: dict[str, Any]) -> AssistantEvent:
    blocks: list[AssistantBlock] = []
    for raw in _message_blocks(data):
        if not isinstance(raw, dict):
            continue
        block_type = raw.get("type")
        if block_type == "text":
            text = raw.get("text")
            blocks.append(TextBlock(text=text if isinstance(text, str) else ""))
        elif block_type == "tool_use":
            tool_input = raw.get("input")
            blocks.append(ToolUseBlock(
                id=_optional_str(raw.get("id")),
                name=_optional_str(raw.get("name")),
                input=tool_input if isinstance(tool_input, dict) else None,
            ))
        # thinking and other block kinds are not rendered or persisted
    return AssistantEvent(content_blocks=tuple(blocks))


def _parse_user(data: dict[str, Any]) -> UserEvent:
    blocks: list[ToolResultBlock] = []
    for raw in _message_blocks(data):
        if not isinstance(raw, dict) or raw.get("type") != "tool_result":
            continue
        is_error = raw.get("is_error")
        blocks.append(ToolResultBlock(
            tool_use_id=_optional_str(raw.get("tool_use_id")),
            content=_as_text(raw.get("content")),
            is_error=is_error if isinstance(is_error, bool) else None,
        ))
    return UserEvent(content_blocks=tuple(blocks))


def _rest(data: dict[str, Any], *consumed: str) -> dict[str, Any]:
    skip = {"type", *consumed}
    return {k: v for k, v in data.items() if k not in skip}


def _parse_system(data: dict[str, Any]) -> SystemEvent:
    subtype = data.get("subtype")
    nested = data.get("data") if isinstance(data.get("data"), dict) else None
    return SystemEvent(
        subtype=subtype if isinstance(subtype, str) else "",
        session_id=_optional_str(data.get("session_id")),
        data=dict(nested) if nested is not None else _rest(data, "subtype", "session_id"),
    )


def _parse_result(data: dict[str, Any]) -> ResultEvent:
    subtype = data.get("subtype")
    nested = data.get("data") if isinstance(data.get("data"), dict) else None
    return ResultEvent(
        subtype=subtype if isinstance(subtype, str) else "",
        data=dict(nested) if nested is not None else _rest(data, "subtype"),
    )


# Map of discriminant strings to parsers
_PARSERS = {
    "system": _parse_system,
    "assistant": _parse_assistant,
    "user": _parse_user,
    "result": _parse_result,
}


def dict_to_event(data: Any) -> Event | None:
    """Convert a decoded stream-json object to a typed event.

    Returns None when the object has no recognized ``type`` field.
    """
    if not isinstance(data, dict):
        return None
    parser = _PARSERS.get(data.get("type"))  # type: ignore[arg-type]
    if parser is None:
        return None
    return parser(data)


def parse_event_line(text: str) -> Event | None:
    """Decode one JSON line into an event, or None if it is not one."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return dict_to_event(data)


# ── Encoding ──


def _block_to_dict(block: TextBlock | ToolUseBlock | ToolResultBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input or {}}
    d: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": block.tool_use_id,
        "content": block.content,
    }
    if block.is_error is not None:
        d["is_error"] = block.is_error
    return d


def event_to_dict(event: Event) -> dict[str, Any]:
    """Convert a typed event back to its stream-json shape."""
    if isinstance(event, SystemEvent):
        d: dict[str, Any] = {"type": "system", "subtype": event.subtype}
        if event.session_id is not None:
            d["session_id"] = event.session_id
        if event.data:
            d["data"] = dict(event.data)
        return d
    if isinstance(event, AssistantEvent):
        return {
            "type": "assistant",
            "message": {"content": [_block_to_dict(b) for b in event.content_blocks]},
        }
    if isinstance(event, UserEvent):
        return {
            "type": "user",
            "message": {"content": [_block_to_dict(b) for b in event.content_blocks]},
        }
    if isinstance(event, ResultEvent):
        d = {"type": "result", "subtype": event.subtype}
        if event.data:
            d["data"] = dict(event.data)
        return d
    raise TypeError(f"Not an event: {event!r}")
