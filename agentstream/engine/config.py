"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via AGENTSTREAM_* env vars
or a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ENV_PREFIX = "AGENTSTREAM_"

# Optional user-facing notification hook (toast, status line, ...).
# Signature: def notify(title: str, message: str) -> None
NotifyCallback = Callable[[str, str], None]


def fire_callback(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Invoke a caller-supplied callback, logging instead of raising.

    A failing callback must never interrupt event processing.
    """
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception(
            "Callback %s failed", getattr(callback, "__qualname__", repr(callback)),
        )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in {"1", "true", "yes"}


@dataclass
class StreamConfig:
    """Stream processor configuration."""

    # Max raw (non-event) output lines kept per process; oldest are
    # evicted first. 0 or a negative value disables the bound.
    raw_output_limit: int = 5000

    # Whether events from the typed-event channel replace events parsed
    # from output lines (only honored when the transport offers it).
    prefer_typed_events: bool = True

    # Directory for JsonMessageStore.
    store_dir: str = str(Path.home() / ".agentstream" / "chats")

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> StreamConfig:
        """Load configuration from AGENTSTREAM_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)
        }
        if overrides:
            logger.info(
                "StreamConfig.from_env: env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("StreamConfig.from_env: no %s* env vars set, using defaults", ENV_PREFIX)

        defaults = cls()
        raw_limit = os.getenv(f"{ENV_PREFIX}RAW_OUTPUT_LIMIT")
        try:
            raw_output_limit = int(raw_limit) if raw_limit else defaults.raw_output_limit
        except ValueError:
            logger.warning(
                "Ignoring invalid %sRAW_OUTPUT_LIMIT=%r", ENV_PREFIX, raw_limit,
            )
            raw_output_limit = defaults.raw_output_limit

        return cls(
            raw_output_limit=raw_output_limit,
            prefer_typed_events=_env_bool(
                f"{ENV_PREFIX}TYPED_EVENTS", defaults.prefer_typed_events,
            ),
            store_dir=os.getenv(f"{ENV_PREFIX}STORE_DIR") or defaults.store_dir,
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level),
        )

    @property
    def raw_output_maxlen(self) -> int | None:
        """Bound for the raw output deque, or None when unbounded."""
        return self.raw_output_limit if self.raw_output_limit > 0 else None
