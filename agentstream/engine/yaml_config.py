"""YAML configuration loader.

Loads an optional YAML file whose ``stream`` section overrides the
environment/default StreamConfig values.

Example YAML:
    stream:
      raw_output_limit: 2000
      prefer_typed_events: false
      store_dir: ~/.agentstream/chats
      log_level: DEBUG
"""
from __future__ import annotations

import logging
import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from .config import StreamConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_FIELD_TYPES: dict[str, type] = {
    "raw_output_limit": int,
    "prefer_typed_events": bool,
    "store_dir": str,
    "log_level": str,
}


def _coerce(path: Path, key: str, value: Any) -> Any:
    expected = _FIELD_TYPES[key]
    if expected is bool:
        if isinstance(value, bool):
            return value
        raise ConfigError(str(path), f"stream.{key} must be true or false")
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(str(path), f"stream.{key} must be an integer")
        return value
    if not isinstance(value, str):
        raise ConfigError(str(path), f"stream.{key} must be a string")
    if key == "store_dir":
        return os.path.expanduser(os.path.expandvars(value))
    return value


def load_yaml_config(path: str | Path, base: StreamConfig | None = None) -> StreamConfig:
    """Load a YAML config file on top of ``base`` (default: from_env())."""
    path = Path(path).expanduser()
    config = base if base is not None else StreamConfig.from_env()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(str(path), f"cannot read file: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(str(path), f"malformed YAML: {e}") from e

    if raw is None:
        return config
    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    section = raw.get("stream") or {}
    if not isinstance(section, dict):
        raise ConfigError(str(path), "'stream' must be a mapping")

    known = {f.name for f in fields(StreamConfig)}
    overrides: dict[str, Any] = {}
    for key, value in section.items():
        if key not in known:
            logger.warning("Unknown key stream.%s in %s, ignoring", key, path)
            continue
        overrides[key] = _coerce(path, key, value)

    if overrides:
        logger.info(
            "Loaded %s: %s", path,
            ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
        )
    return replace(config, **overrides)
