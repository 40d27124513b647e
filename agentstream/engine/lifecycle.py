"""Process lifecycle state machine.

Defines valid transitions and enforces them. validate_transition()
raises InvalidTransitionError; LifecycleTracker catches it and logs the
notification as an anomaly instead of applying it.

State Diagram:

    STARTING ──> RUNNING ──┬──> COMPLETED
        │                  ├──> FAILED
        │                  └──> KILLED
        └──> COMPLETED | FAILED | KILLED

    Terminal states are absorbing.
"""
from __future__ import annotations

import logging

from .errors import InvalidTransitionError
from .events import Event, SystemEvent
from .models import ProcessLifecycle, ProcessStatus

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[ProcessStatus, set[ProcessStatus]] = {
    ProcessStatus.STARTING: {
        ProcessStatus.RUNNING,
        ProcessStatus.COMPLETED,
        ProcessStatus.FAILED,
        ProcessStatus.KILLED,
    },
    ProcessStatus.RUNNING: {
        ProcessStatus.COMPLETED,
        ProcessStatus.FAILED,
        ProcessStatus.KILLED,
    },
    ProcessStatus.COMPLETED: set(),
    ProcessStatus.FAILED: set(),
    ProcessStatus.KILLED: set(),
}


def validate_transition(current: ProcessStatus, target: ProcessStatus) -> None:
    """Validate a status transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidTransitionError(
            current.value,
            target.value,
            sorted(s.value for s in allowed),
        )


class LifecycleTracker:
    """Tracks status, exit code and session id for one process."""

    def __init__(self, process_id: str = "") -> None:
        self._process_id = process_id
        self._status = ProcessStatus.STARTING
        self._exit_code: int | None = None
        self._session_id: str | None = None

    @property
    def status(self) -> ProcessStatus:
        return self._status

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_terminal(self) -> bool:
        return self._status.is_terminal

    def snapshot(self) -> ProcessLifecycle:
        return ProcessLifecycle(
            status=self._status,
            exit_code=self._exit_code,
            session_id=self._session_id,
        )

    def apply_status(
        self,
        status: ProcessStatus | str | None,
        exit_code: int | None = None,
    ) -> bool:
        """Apply an external status notification.

        Returns True if the status or exit code changed.
        """
        target = ProcessStatus.parse(status)
        if target is None:
            logger.warning(
                "Ignoring unknown status %r for process %s", status, self._process_id,
            )
            return False

        if self._status.is_terminal:
            logger.warning(
                "Ignoring status %s for process %s: already %s",
                target.value, self._process_id, self._status.value,
            )
            return False

        if target == self._status:
            return self._record_exit_code(exit_code)

        try:
            validate_transition(self._status, target)
        except InvalidTransitionError as e:
            logger.warning("Process %s: %s", self._process_id, e)
            return False

        logger.debug(
            "Process %s status %s -> %s (exit_code=%s)",
            self._process_id, self._status.value, target.value, exit_code,
        )
        self._status = target
        self._record_exit_code(exit_code)
        return True

    def _record_exit_code(self, exit_code: int | None) -> bool:
        if exit_code is None or isinstance(exit_code, bool):
            return False
        try:
            code = int(exit_code)
        except (TypeError, ValueError):
            logger.warning(
                "Ignoring non-integer exit code %r for process %s",
                exit_code, self._process_id,
            )
            return False
        if code == self._exit_code:
            return False
        self._exit_code = code
        return True

    def observe_event(self, event: Event) -> bool:
        """Capture the session id from an init event.

        First write wins. Returns True only when the id was newly set.
        """
        if not isinstance(event, SystemEvent) or event.subtype != "init":
            return False
        if not event.session_id:
            return False
        if self._session_id is not None:
            if event.session_id != self._session_id:
                logger.debug(
                    "Process %s: keeping session id %s, ignoring %s",
                    self._process_id, self._session_id, event.session_id,
                )
            return False
        self._session_id = event.session_id
        logger.info("Process %s session id: %s", self._process_id, self._session_id)
        return True
