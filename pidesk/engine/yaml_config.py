"""YAML configuration loader.

Example YAML:
    reconciler:
      frame_interval_seconds: 0.016
      max_unattached_tool_results: 128
      max_closed_sessions: 512
      event_queue_size: 2000
      event_queue_put_timeout: 10
      log_level: DEBUG

Values not present in the file keep whatever the base config had
(defaults, or ``ReconcilerConfig.from_env()``).
"""
from __future__ import annotations

import logging
from dataclasses import fields, replace
from pathlib import Path

import yaml

from .config import ReconcilerConfig

logger = logging.getLogger(__name__)

_CASTS = {
    "frame_interval_seconds": float,
    "max_unattached_tool_results": int,
    "max_closed_sessions": int,
    "event_queue_size": int,
    "event_queue_put_timeout": float,
    "log_level": lambda v: str(v).upper(),
}


def load_yaml_config(
    path: str | Path, base: ReconcilerConfig | None = None,
) -> ReconcilerConfig:
    """Load a ReconcilerConfig from a YAML file.

    Raises:
        FileNotFoundError: *path* does not exist.
        ValueError: the file, or its ``reconciler`` section, is not a mapping,
            or a value cannot be converted.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")

    section = raw.get("reconciler") or {}
    if not isinstance(section, dict):
        raise ValueError(f"'reconciler' section must be a mapping: {path}")

    known = {f.name for f in fields(ReconcilerConfig)}
    updates = {}
    for key, value in section.items():
        if key not in known:
            logger.warning("Ignoring unknown reconciler setting %r in %s", key, path)
            continue
        try:
            updates[key] = _CASTS[key](value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for {key!r} in {path}: {value!r}") from exc

    config = replace(base or ReconcilerConfig(), **updates)
    logger.info(
        "Loaded YAML config %s (overrides: %s)",
        path, ", ".join(sorted(updates)) or "<none>",
    )
    return config
