"""Line classification for agent subprocess output.

Every non-empty sanitized line becomes exactly one of:

- a structured Event (stream-json object with a known ``type``)
- a PermissionRequest (interactive "Allow ...? (y/n)" prompt)
- an OutputLine (anything else)

Classification never raises. Malformed JSON degrades to raw output.
"""
from __future__ import annotations

import logging
import re
from typing import Union

from .events import Event, parse_event_line
from .models import OutputKind, OutputLine, PermissionRequest
from .sanitizer import sanitize

logger = logging.getLogger(__name__)

ClassifiedLine = Union[Event, PermissionRequest, OutputLine]

PERMISSION_TRIGGER = "Allow"
PERMISSION_MARKERS = ("(y/n)", "? [y/n]")

# Checked in order; first keyword found wins
_TOOL_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("write", "Write"), "Write"),
    (("read", "Read"), "Read"),
    (("execute", "Execute", "bash", "Bash"), "Bash"),
)
DEFAULT_TOOL_NAME = "Tool"

_QUOTES_RE = re.compile(r"[\"'`]")
_TRAILING_PUNCTUATION = "?!,;)"


def is_permission_prompt(text: str) -> bool:
    return PERMISSION_TRIGGER in text and any(m in text for m in PERMISSION_MARKERS)


def infer_tool_name(text: str) -> str:
    """Guess which tool a permission prompt is about."""
    for keywords, tool_name in _TOOL_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return tool_name
    return DEFAULT_TOOL_NAME


def infer_file_path(text: str) -> str | None:
    """Return the first token that looks like an absolute path.

    Quote characters and trailing prompt punctuation are stripped
    first. A token counts as a path when it starts with ``/`` or
    contains a Windows drive separator ``:\\``.
    """
    for token in text.split():
        candidate = _QUOTES_RE.sub("", token).rstrip(_TRAILING_PUNCTUATION)
        if candidate.startswith("/") or ":\\" in candidate:
            return candidate
    return None


def parse_permission_request(text: str, process_id: str) -> PermissionRequest | None:
    """Build a PermissionRequest if the text looks like a yes/no prompt."""
    if not is_permission_prompt(text):
        return None
    return PermissionRequest(
        process_id=process_id,
        tool_name=infer_tool_name(text),
        file_path=infer_file_path(text),
        description=text,
    )


def classify_line(
    line: str,
    *,
    process_id: str = "",
    kind: OutputKind | str = OutputKind.STDOUT,
    timestamp: str = "",
) -> ClassifiedLine | None:
    """Classify one line of subprocess output.

    Returns None for blank lines, which are discarded entirely.
    """
    clean = sanitize(line if isinstance(line, str) else str(line))
    trimmed = clean.strip()
    if not trimmed:
        return None

    if trimmed.startswith("{"):
        event = parse_event_line(trimmed)
        if event is not None:
            return event
        logger.debug("Unrecognized JSON line for %s, treating as raw output", process_id)

    request = parse_permission_request(trimmed, process_id)
    if request is not None:
        return request

    return OutputLine(
        content=clean.rstrip("\r\n"),
        kind=OutputKind.parse(kind),
        timestamp=timestamp,
    )
