"""Turn segmentation and content extraction.

When a session is resumed the subprocess replays its entire history
before producing the new turn. filter_to_current_turn() cuts the event
list down to the turn that has not been persisted yet, and
extract_turn_content() reduces that slice to the fields handed to the
message store.

Both functions are pure: they never mutate their input and tolerate
entries that are not events (skipped).
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, assert_never

from .events import (
    AssistantEvent,
    ResultEvent,
    SystemEvent,
    TextBlock,
    ToolUseBlock,
    UserEvent,
    is_event,
)


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: str = ""
    is_error: bool | None = None


@dataclass(frozen=True)
class TurnContent:
    """Persistable fields of one assistant turn."""
    text_content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()

    @property
    def is_empty(self) -> bool:
        """True when there is nothing worth saving (no text, no tool calls)."""
        return not self.text_content and not self.tool_calls


def filter_to_current_turn(events: Sequence[Any], persisted_turns: int) -> list[Any]:
    """Return the events of the turn that has not been persisted yet.

    A turn starts at an AssistantEvent found at index 0 or directly
    after a ResultEvent. The slice begins at the first turn start past
    ``persisted_turns``. If the replay holds fewer turns than that,
    fall back to whatever follows the last ResultEvent (possibly
    nothing).
    """
    if persisted_turns <= 0:
        return list(events)

    turn_count = 0
    last_was_result = False

    for index, event in enumerate(events):
        if not is_event(event):
            continue
        if isinstance(event, AssistantEvent):
            if index == 0 or last_was_result:
                turn_count += 1
                if turn_count > persisted_turns:
                    return list(events[index:])
            last_was_result = False
        elif isinstance(event, ResultEvent):
            last_was_result = True
        else:
            last_was_result = False

    for index in range(len(events) - 1, -1, -1):
        if isinstance(events[index], ResultEvent):
            return list(events[index + 1:])
    return []


def extract_turn_content(events: Sequence[Any]) -> TurnContent:
    """Collect text, tool calls and tool results from a turn's events."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    tool_results: list[ToolResult] = []

    for event in events:
        if not is_event(event):
            continue
        if isinstance(event, AssistantEvent):
            for block in event.content_blocks:
                if isinstance(block, TextBlock):
                    if block.text:
                        text_parts.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    if block.id and block.name:
                        tool_calls.append(ToolCall(
                            id=block.id,
                            name=block.name,
                            input=dict(block.input or {}),
                        ))
                else:
                    assert_never(block)
        elif isinstance(event, UserEvent):
            for result in event.content_blocks:
                if result.tool_use_id:
                    tool_results.append(ToolResult(
                        tool_use_id=result.tool_use_id,
                        content=result.content or "",
                        is_error=result.is_error,
                    ))
        elif isinstance(event, (SystemEvent, ResultEvent)):
            continue
        else:
            assert_never(event)

    return TurnContent(
        text_content="\n\n".join(text_parts),
        tool_calls=tuple(tool_calls),
        tool_results=tuple(tool_results),
    )
