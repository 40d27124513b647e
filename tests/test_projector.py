"""Tests for display item projection."""
from __future__ import annotations

from agentstream.engine.events import (
    AssistantEvent,
    ResultEvent,
    SystemEvent,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserEvent,
)
from agentstream.engine.projector import (
    ResultItem,
    TextItem,
    ToolDisplay,
    ToolItem,
    display_item_to_dict,
    project_display_items,
)


def _use(tool_id: str, name: str, **tool_input) -> AssistantEvent:
    return AssistantEvent(content_blocks=(ToolUseBlock(id=tool_id, name=name, input=tool_input),))


def _done(tool_id: str, content: str, is_error: bool | None = None) -> UserEvent:
    return UserEvent(content_blocks=(
        ToolResultBlock(tool_use_id=tool_id, content=content, is_error=is_error),
    ))


def test_tool_pair_becomes_one_completed_item():
    items = project_display_items([_use("1", "Bash"), _done("1", "ok")])
    assert items == [ToolItem(tool=ToolDisplay(name="Bash", id="1", input={}, output="ok"))]
    assert display_item_to_dict(items[0]) == {
        "type": "tool",
        "tool": {"name": "Bash", "id": "1", "input": {}, "output": "ok"},
    }


def test_completed_tool_appears_where_result_arrived():
    events = [
        _use("1", "Read", path="/a"),
        AssistantEvent(content_blocks=(TextBlock(text="while reading"),)),
        _done("1", "contents"),
        ResultEvent(subtype="success"),
    ]
    items = project_display_items(events)
    assert [type(i) for i in items] == [TextItem, ToolItem, ResultItem]
    assert items[0].content == "while reading"
    assert items[1].tool.output == "contents"
    assert items[2].subtype == "success"


def test_orphan_result_is_dropped():
    events = [_done("x", "early"), _use("x", "Bash"), AssistantEvent(content_blocks=(TextBlock(text="t"),))]
    items = project_display_items(events)
    # The later invocation is still pending at the end
    assert items == [
        TextItem(content="t"),
        ToolItem(tool=ToolDisplay(name="Bash", id="x", input={})),
    ]
    assert items[1].tool.in_progress


def test_pending_tools_are_emitted_in_progress():
    items = project_display_items([_use("1", "Bash", command="ls"), _use("2", "Read")])
    assert [i.tool.id for i in items] == ["1", "2"]
    assert all(i.tool.in_progress for i in items)
    assert all(i.tool.output is None for i in items)


def test_error_flag_carried_to_display():
    items = project_display_items([_use("1", "Bash"), _done("1", "boom", is_error=True)])
    assert items[0].tool.is_error is True
    assert display_item_to_dict(items[0])["tool"]["isError"] is True


def test_system_events_and_blank_text_are_not_rendered():
    events = [
        SystemEvent(subtype="init", session_id="s"),
        AssistantEvent(content_blocks=(TextBlock(text=""),)),
        None,
        "junk",
    ]
    assert project_display_items(events) == []


def test_tool_use_without_id_is_ignored():
    events = [AssistantEvent(content_blocks=(ToolUseBlock(id=None, name="Bash"),))]
    assert project_display_items(events) == []


def test_result_without_subtype_is_unknown():
    assert project_display_items([ResultEvent()]) == [ResultItem(subtype="unknown")]
    assert display_item_to_dict(ResultItem(subtype="unknown")) == {"type": "result", "subtype": "unknown"}
