"""Replay a recorded transport log through the reconciler.

Usage:
    pidesk-replay events.jsonl
    pidesk-replay events.jsonl --close s2 --verbose
    pidesk-replay events.jsonl --config pidesk.yaml --log-file replay.log

Each line of the log is one transport envelope
(``{"sessionId": ..., "event": {...}}``). One display frame is ticked per
line, so delta batching behaves as it would at one event per frame.
"""
from __future__ import annotations

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console

from pidesk.engine.config import ReconcilerConfig
from pidesk.engine.scheduler import ManualFrameScheduler
from pidesk.engine.session_manager import SessionManager
from pidesk.shared.formatters.transcript import render_transcript

logger = logging.getLogger(__name__)


def _configure_logging(level: str, log_file: str | None) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s", datefmt="%H:%M:%S",
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    if log_file:
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def replay(
    lines: list[str],
    config: ReconcilerConfig,
    close: list[str] | None = None,
) -> SessionManager:
    """Feed *lines* through a fresh SessionManager and return it."""
    scheduler = ManualFrameScheduler()
    manager = SessionManager(config=config, scheduler=scheduler)
    dropped = 0
    for line in lines:
        if not line.strip():
            continue
        if not manager.dispatch(line):
            dropped += 1
        scheduler.tick()
    for session_id in close or []:
        manager.close_session(session_id)
    logger.info(
        "Replayed %d line(s), %d dropped, %d session(s) open",
        len(lines), dropped, len(manager.registry),
    )
    return manager


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pidesk-replay",
        description="Replay an agent event log and print the reconciled transcript",
    )
    parser.add_argument(
        "log",
        help="JSONL file of transport envelopes ('-' for stdin)",
    )
    parser.add_argument(
        "--close",
        action="append",
        default=[],
        metavar="SESSION",
        help="Close this session after replay (repeatable)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (reconciler: section)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    config = ReconcilerConfig.from_env()
    if args.config:
        from pidesk.engine.yaml_config import load_yaml_config
        try:
            config = load_yaml_config(args.config, base=config)
        except (FileNotFoundError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2
    _configure_logging("DEBUG" if args.verbose else config.log_level, args.log_file)

    if args.log == "-":
        lines = sys.stdin.read().splitlines()
    else:
        path = Path(args.log)
        if not path.exists():
            print(f"Error: log file not found: {path}", file=sys.stderr)
            return 2
        lines = path.read_text(encoding="utf-8").splitlines()

    manager = replay(lines, config, close=args.close)

    console = Console()
    for session_id in manager.registry.session_ids():
        runtime = manager.registry.get(session_id)
        if runtime is not None:
            console.print(render_transcript(session_id, runtime.messages.messages))
    return 0


if __name__ == "__main__":
    sys.exit(main())
