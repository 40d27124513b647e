"""Core data models for the stream processor.

Status enums, raw output lines, permission prompts and the process
lifecycle record. Event types live in events.py.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class ProcessStatus(str, Enum):
    """Subprocess lifecycle states. See lifecycle.py for transition rules."""
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: str | ProcessStatus | None) -> ProcessStatus | None:
        """Map a wire status string to a ProcessStatus, or None if unknown."""
        if isinstance(value, ProcessStatus):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


TERMINAL_STATUSES = frozenset({
    ProcessStatus.COMPLETED,
    ProcessStatus.FAILED,
    ProcessStatus.KILLED,
})


class OutputKind(str, Enum):
    """Which stream of the subprocess a raw line came from."""
    STDOUT = "stdout"
    STDERR = "stderr"

    @classmethod
    def parse(cls, value: str | OutputKind | None) -> OutputKind:
        if isinstance(value, OutputKind):
            return value
        if isinstance(value, str) and value.lower() == "stderr":
            return cls.STDERR
        return cls.STDOUT


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class OutputLine:
    """A line of subprocess output that is not a structured event."""
    content: str
    kind: OutputKind = OutputKind.STDOUT
    timestamp: str = ""

    @classmethod
    def now(cls, content: str, kind: OutputKind = OutputKind.STDOUT) -> OutputLine:
        return cls(content=content, kind=kind, timestamp=_utcnow_iso())


@dataclass(frozen=True)
class PermissionRequest:
    """Interactive yes/no prompt detected in raw output.

    Best-effort: tool_name and file_path are inferred heuristically
    from the prompt text, description is the prompt itself.
    """
    process_id: str
    tool_name: str
    description: str
    file_path: str | None = None


@dataclass(frozen=True)
class ProcessLifecycle:
    """Snapshot of a process lifecycle.

    status only moves forward once terminal; session_id is set at
    most once per process.
    """
    status: ProcessStatus = ProcessStatus.STARTING
    exit_code: int | None = None
    session_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_running(self) -> bool:
        return self.status in (ProcessStatus.STARTING, ProcessStatus.RUNNING)
