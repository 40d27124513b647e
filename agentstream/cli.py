"""CLI entry point: replay a captured agent stream.

Usage:
    agentstream replay capture.log
    agentstream replay capture.log --persisted-turns 2 --raw
    agentstream replay capture.log --config agentstream.yaml --verbose

Each line of the capture is one line of subprocess output. Lines
prefixed with ``stderr:`` are delivered as stderr.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import assert_never

from rich.console import Console, Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from agentstream.adapters.event_bus import LocalChannelBus
from agentstream.adapters.orchestrator import StreamOrchestrator, StreamSnapshot
from agentstream.engine.config import StreamConfig
from agentstream.engine.errors import ConfigError
from agentstream.engine.models import OutputKind, ProcessStatus
from agentstream.engine.projector import (
    DisplayItem,
    ResultItem,
    TextItem,
    ToolItem,
    project_display_items,
)
from agentstream.engine.turns import filter_to_current_turn

logger = logging.getLogger(__name__)

STDERR_PREFIX = "stderr:"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="agentstream",
        description="Stream processing for interactive agent subprocesses",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay = subparsers.add_parser(
        "replay",
        help="Replay a captured output stream and render the result",
    )
    replay.add_argument("file", help="Captured output, one line per output line")
    replay.add_argument(
        "--process-id",
        default="replay",
        help="Process id used for the replay channels (default: replay)",
    )
    replay.add_argument(
        "--persisted-turns",
        type=int,
        default=0,
        help="Assistant turns already persisted; earlier turns are hidden",
    )
    replay.add_argument(
        "--raw",
        action="store_true",
        help="Also show raw (non-event) output",
    )
    replay.add_argument(
        "--config",
        default=None,
        help="YAML config file with a 'stream' section",
    )
    replay.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    config = StreamConfig.from_env()
    if args.config:
        from agentstream.engine.yaml_config import load_yaml_config

        try:
            config = load_yaml_config(args.config, base=config)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

    level = logging.DEBUG if args.verbose else getattr(
        logging, config.log_level.upper(), logging.INFO,
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    path = Path(args.file)
    if not path.is_file():
        print(f"Error: Capture file not found: {args.file}", file=sys.stderr)
        return 1
    lines = path.read_text(encoding="utf-8", errors="replace").split("\n")

    snapshot = asyncio.run(replay_lines(lines, args.process_id, config))
    render_snapshot(
        Console(),
        snapshot,
        persisted_turns=max(args.persisted_turns, 0),
        show_raw=args.raw,
    )
    return 0


async def replay_lines(
    lines: list[str],
    process_id: str,
    config: StreamConfig | None = None,
) -> StreamSnapshot:
    """Push captured lines through a local bus and return the final state."""
    bus = LocalChannelBus()
    orchestrator = StreamOrchestrator(bus, config)
    handle = await orchestrator.observe(process_id)

    bus.publish_status(process_id, ProcessStatus.RUNNING.value)
    for line in lines:
        if line.startswith(STDERR_PREFIX):
            bus.publish_output(process_id, line[len(STDERR_PREFIX):], OutputKind.STDERR.value)
        else:
            bus.publish_output(process_id, line, OutputKind.STDOUT.value)
    bus.publish_status(process_id, ProcessStatus.COMPLETED.value, 0)

    snapshot = handle.snapshot()
    orchestrator.close()
    logger.debug(
        "Replayed %d lines: %d events, %d raw lines",
        len(lines), len(snapshot.events), len(snapshot.output),
    )
    return snapshot


def _render_item(item: DisplayItem):
    if isinstance(item, TextItem):
        return Markdown(item.content)
    if isinstance(item, ToolItem):
        tool = item.tool
        body: list = [Text(json.dumps(tool.input, indent=2, ensure_ascii=False), style="dim")]
        if tool.output is not None:
            body.append(Text(tool.output))
        if tool.in_progress:
            border = "yellow"
        elif tool.is_error:
            border = "red"
        else:
            border = "green"
        return Panel(Group(*body), title=tool.name, subtitle=tool.id, border_style=border)
    if isinstance(item, ResultItem):
        return Text(f"result: {item.subtype}", style="bold cyan")
    assert_never(item)


def render_snapshot(
    console: Console,
    snapshot: StreamSnapshot,
    *,
    persisted_turns: int = 0,
    show_raw: bool = False,
) -> None:
    lifecycle = snapshot.lifecycle
    header = Text()
    header.append(f"process {snapshot.process_id}", style="bold")
    header.append(f"  status={lifecycle.status.value}")
    if lifecycle.exit_code is not None:
        header.append(f"  exit_code={lifecycle.exit_code}")
    if lifecycle.session_id:
        header.append(f"  session={lifecycle.session_id}")
    console.print(header)

    items = project_display_items(filter_to_current_turn(snapshot.events, persisted_turns))
    if not items:
        console.print(Text("(no display items in the current turn)", style="dim"))
    for item in items:
        console.print(_render_item(item))

    request = snapshot.permission_request
    if request is not None:
        details = Text(request.description)
        if request.file_path:
            details.append(f"\n{request.file_path}", style="bold")
        console.print(Panel(
            details,
            title=f"Permission requested: {request.tool_name}",
            border_style="magenta",
        ))

    if show_raw and snapshot.output:
        raw = Text()
        for i, line in enumerate(snapshot.output):
            if i:
                raw.append("\n")
            raw.append(line.content, style="red" if line.kind is OutputKind.STDERR else "")
        console.print(Panel(raw, title="Raw output", border_style="dim"))


if __name__ == "__main__":
    sys.exit(main())
