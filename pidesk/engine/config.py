"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via PIDESK_* env vars, or a
YAML file (see ``yaml_config``).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from pidesk.engine.scheduler import DEFAULT_FRAME_INTERVAL

logger = logging.getLogger(__name__)


@dataclass
class ReconcilerConfig:
    """Reconciliation engine configuration."""

    # Interval for the asyncio frame scheduler (one display refresh).
    frame_interval_seconds: float = DEFAULT_FRAME_INTERVAL

    # Tool results that arrive before their tool call block exists are held
    # per session until the block shows up. Oldest are evicted past this.
    max_unattached_tool_results: int = 256

    # Closed session ids remembered so a late agent_start cannot reopen them.
    # Oldest are forgotten past this.
    max_closed_sessions: int = 1024

    # Transport event queue
    event_queue_size: int = 5000
    event_queue_put_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> ReconcilerConfig:
        """Load configuration from PIDESK_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("PIDESK_")
        }
        if overrides:
            logger.info(
                "ReconcilerConfig.from_env: PIDESK_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("ReconcilerConfig.from_env: no PIDESK_* env vars set, using defaults")

        config = cls(
            frame_interval_seconds=float(os.getenv(
                "PIDESK_FRAME_INTERVAL", str(cls.frame_interval_seconds)
            )),
            max_unattached_tool_results=int(os.getenv(
                "PIDESK_MAX_UNATTACHED_RESULTS",
                str(cls.max_unattached_tool_results),
            )),
            max_closed_sessions=int(os.getenv(
                "PIDESK_MAX_CLOSED_SESSIONS", str(cls.max_closed_sessions)
            )),
            event_queue_size=int(os.getenv(
                "PIDESK_QUEUE_SIZE", str(cls.event_queue_size)
            )),
            event_queue_put_timeout=float(os.getenv(
                "PIDESK_QUEUE_PUT_TIMEOUT", str(cls.event_queue_put_timeout)
            )),
            log_level=os.getenv("PIDESK_LOG_LEVEL", cls.log_level).upper(),
        )
        logger.debug(
            "ReconcilerConfig.from_env: frame_interval=%.4f max_unattached=%d "
            "queue_size=%d log_level=%s",
            config.frame_interval_seconds, config.max_unattached_tool_results,
            config.event_queue_size, config.log_level,
        )
        return config
