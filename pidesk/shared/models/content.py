"""Append-friendly helpers for a message's content block list.

Deltas arrive many times per second while an assistant message streams, so
these helpers mutate the list (and matching blocks) in place instead of
rebuilding it. The list only ever grows; indices are dense.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from pidesk.shared.models.message import (
    BlockKind,
    ContentBlock,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
)

MODEL_REQUEST_FAILED = (
    "The model request failed. Check provider authentication and model settings."
)


def ensure_index(content: list[ContentBlock], index: int) -> None:
    """Pad *content* with empty text blocks until *index* exists."""
    while len(content) <= index:
        content.append(TextBlock())


def set_block(content: list[ContentBlock], index: int, block: ContentBlock) -> None:
    """Replace the block at *index* wholesale (last write wins)."""
    ensure_index(content, index)
    content[index] = block


def _seed_block(fragment: str, kind: BlockKind) -> ContentBlock:
    if kind is BlockKind.THINKING:
        return ThinkingBlock(thinking=fragment)
    return TextBlock(text=fragment)


def append_to_block(
    content: list[ContentBlock],
    index: int,
    fragment: str,
    kind: BlockKind,
) -> None:
    """Append *fragment* to the block at *index*.

    A block of the same kind is extended in place. A block of a different
    kind (or a padding slot) is replaced by a fresh block seeded with the
    fragment; kinds are never merged.
    """
    ensure_index(content, index)
    block = content[index]
    if kind is BlockKind.TEXT and isinstance(block, TextBlock):
        block.text += fragment
    elif kind is BlockKind.THINKING and isinstance(block, ThinkingBlock):
        block.thinking += fragment
    else:
        content[index] = _seed_block(fragment, kind)


def block_from_dict(raw: Any) -> ContentBlock | None:
    """Convert one wire content block, or return None if it is not one we render."""
    if not isinstance(raw, dict):
        return None
    block_type = raw.get("type")
    if block_type == "text":
        text = raw.get("text")
        return TextBlock(text=text if isinstance(text, str) else "")
    if block_type == "thinking":
        thinking = raw.get("thinking")
        return ThinkingBlock(thinking=thinking if isinstance(thinking, str) else "")
    if block_type == "toolCall":
        arguments = raw.get("arguments")
        is_error = raw.get("isError")
        result = raw.get("result")
        return ToolCallBlock(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            arguments=arguments if isinstance(arguments, dict) else {},
            result=result if isinstance(result, str) else None,
            is_error=is_error if isinstance(is_error, bool) else None,
        )
    return None


def convert_assistant_content(raw: Any) -> list[ContentBlock]:
    """Convert raw assistant content (string or block list) into blocks."""
    if isinstance(raw, str):
        return [TextBlock(text=raw)] if raw else []
    if isinstance(raw, list):
        blocks = []
        for item in raw:
            block = block_from_dict(item)
            if block is not None:
                blocks.append(block)
        return blocks
    return []


def convert_user_content(raw: Any) -> str:
    """Flatten raw user content into a single string."""
    if isinstance(raw, str):
        return raw
    if raw is None:
        return ""
    if isinstance(raw, list):
        parts = []
        for item in raw:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and item.get("type") == "text":
                text = item.get("text")
                parts.append(text if isinstance(text, str) else "")
        return "".join(parts)
    try:
        return json.dumps(raw)
    except (TypeError, ValueError):
        return str(raw)


def extract_assistant_error(message: dict[str, Any]) -> str | None:
    """Return the user-facing error carried by an assistant message, if any."""
    error_message = message.get("errorMessage")
    if isinstance(error_message, str) and error_message.strip():
        return error_message.strip()
    if message.get("stopReason") == "error":
        return MODEL_REQUEST_FAILED
    return None


def timestamp_from_ms(value: Any) -> datetime:
    """Convert an epoch-milliseconds wire timestamp, falling back to now."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass
    return datetime.now(timezone.utc)
