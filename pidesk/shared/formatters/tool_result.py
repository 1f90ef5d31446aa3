"""Turn heterogeneous tool execution results into display text.

Results come straight off the agent transport, so they can be plain strings,
lists of content parts, ``{"content": [...]}`` wrappers, arbitrary JSON, or
in pathological cases self-referencing structures. ``format_tool_result``
always returns a string and never raises.
"""

from __future__ import annotations

import json
from typing import Any

UNDISPLAYABLE_RESULT = "[Unable to display result]"


def _extract_text_parts(items: list[Any]) -> list[str]:
    parts: list[str] = []
    for item in items:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict):
            if item.get("type") == "text" and isinstance(item.get("text"), str):
                parts.append(item["text"])
    return parts


def _to_json(result: Any) -> str:
    try:
        return json.dumps(result, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError, RecursionError):
        # Circular references land here
        return UNDISPLAYABLE_RESULT


def format_tool_result(result: Any) -> str:
    """Convert a tool result to a displayable string."""
    if result is None:
        return ""

    if isinstance(result, str):
        return result

    if isinstance(result, bool):
        return "true" if result else "false"

    if isinstance(result, (list, tuple)):
        parts = _extract_text_parts(list(result))
        if parts:
            return "\n".join(parts)
        return _to_json(list(result))

    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, list):
            parts = _extract_text_parts(content)
            if parts:
                return "\n".join(parts)
        return _to_json(result)

    try:
        return str(result)
    except Exception:
        return UNDISPLAYABLE_RESULT
