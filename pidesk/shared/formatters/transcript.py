"""Rich rendering of a session's reconciled messages.

Used by the replay CLI to show what the reconciler produced. Text is shown
verbatim (no markdown), thinking dimmed, tool calls as a one-line header
followed by their result.
"""

from __future__ import annotations

import json

from rich.console import Group, RenderableType
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from pidesk.shared.models.message import (
    ContentBlock,
    Message,
    MessageRole,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
)

_RESULT_PREVIEW_LINES = 12


def _esc(text: str) -> str:
    """Escape Rich markup characters."""
    return escape(text)


def _tool_status(block: ToolCallBlock) -> str:
    if block.result is None:
        return "[yellow]\\[pending][/yellow]"
    if block.is_error:
        return "[red]error[/red]"
    return "[green]done[/green]"


def render_block_markup(block: ContentBlock) -> str:
    """Render one content block as a Rich markup string."""
    if isinstance(block, TextBlock):
        return _esc(block.text)
    if isinstance(block, ThinkingBlock):
        return f"[dim italic]{_esc(block.thinking)}[/dim italic]"
    if isinstance(block, ToolCallBlock):
        args = json.dumps(block.arguments, ensure_ascii=False, default=str)
        lines = [
            f"[dim]▶[/dim]  [cyan]{_esc(block.name)}[/cyan]  "
            f"[dim]{_esc(args)}[/dim]  {_tool_status(block)}"
        ]
        if block.result:
            result_lines = block.result.splitlines()
            for line in result_lines[:_RESULT_PREVIEW_LINES]:
                lines.append(f"  {_esc(line)}")
            hidden = len(result_lines) - _RESULT_PREVIEW_LINES
            if hidden > 0:
                lines.append(f"  [dim]… {hidden} more line(s)[/dim]")
        return "\n".join(lines)
    return ""


def render_message(message: Message) -> Panel:
    body = "\n\n".join(
        markup for markup in (render_block_markup(b) for b in message.content)
        if markup
    )
    if message.role is MessageRole.USER:
        title, style = "user", "blue"
    else:
        title, style = "assistant", "green"
    if message.streaming:
        title += " (streaming)"
    return Panel(
        Text.from_markup(body) if body else Text(""),
        title=title,
        title_align="left",
        border_style=style,
        subtitle=message.timestamp.strftime("%H:%M:%S"),
        subtitle_align="right",
    )


def render_transcript(session_id: str, messages: list[Message]) -> RenderableType:
    header = Text(f"Session {session_id}: {len(messages)} message(s)", style="bold")
    return Group(header, *(render_message(m) for m in messages))
