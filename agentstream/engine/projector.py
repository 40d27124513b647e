"""Projection of the event history into renderable display items.

Tool invocations are held in a pending map keyed by tool-use id and
emitted when their result arrives, so a completed tool appears where it
finished rather than where it was invoked. Results with no matching
invocation are dropped. Tools still pending at the end are emitted as
in-progress items.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Union, assert_never

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
class ToolDisplay:
    name: str
    id: str | None = None
    input: dict[str, Any] | None = None
    output: str | None = None
    is_error: bool | None = None

    @property
    def in_progress(self) -> bool:
        return self.output is None


@dataclass(frozen=True)
class TextItem:
    content: str
    type: str = "text"


@dataclass(frozen=True)
class ToolItem:
    tool: ToolDisplay
    type: str = "tool"


@dataclass(frozen=True)
class ResultItem:
    subtype: str
    type: str = "result"


DisplayItem = Union[TextItem, ToolItem, ResultItem]


def project_display_items(events: Sequence[Any]) -> list[DisplayItem]:
    """Reduce an event list to ordered display items."""
    items: list[DisplayItem] = []
    pending: dict[str, ToolDisplay] = {}

    for event in events:
        if not is_event(event):
            continue
        if isinstance(event, AssistantEvent):
            for block in event.content_blocks:
                if isinstance(block, TextBlock):
                    if block.text:
                        items.append(TextItem(content=block.text))
                elif isinstance(block, ToolUseBlock):
                    if block.id and block.name:
                        pending[block.id] = ToolDisplay(
                            id=block.id,
                            name=block.name,
                            input=block.input,
                        )
                else:
                    assert_never(block)
        elif isinstance(event, UserEvent):
            for result in event.content_blocks:
                if not result.tool_use_id:
                    continue
                invocation = pending.pop(result.tool_use_id, None)
                if invocation is None:
                    continue
                items.append(ToolItem(tool=ToolDisplay(
                    id=invocation.id,
                    name=invocation.name or "unknown",
                    input=invocation.input,
                    output=result.content,
                    is_error=result.is_error,
                )))
        elif isinstance(event, ResultEvent):
            items.append(ResultItem(subtype=event.subtype or "unknown"))
        elif isinstance(event, SystemEvent):
            continue
        else:
            assert_never(event)

    for invocation in pending.values():
        items.append(ToolItem(tool=invocation))

    return items


def display_item_to_dict(item: DisplayItem) -> dict[str, Any]:
    """Plain-dict form of a display item, for JSON renderers."""
    if isinstance(item, TextItem):
        return {"type": "text", "content": item.content}
    if isinstance(item, ResultItem):
        return {"type": "result", "subtype": item.subtype}
    if isinstance(item, ToolItem):
        tool: dict[str, Any] = {"name": item.tool.name}
        for key in ("id", "input", "output"):
            value = getattr(item.tool, key)
            if value is not None:
                tool[key] = value
        if item.tool.is_error is not None:
            tool["isError"] = item.tool.is_error
        return {"type": "tool", "tool": tool}
    assert_never(item)
