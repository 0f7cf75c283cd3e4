"""Markdown export for chat transcripts."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .agent_loop import ChatTurn


def default_export_filename(now: datetime | None = None) -> str:
    stamp = int((now or datetime.now()).timestamp() * 1000)
    return f"vault-chat-{stamp}.md"


def export_chat_markdown(turns: Sequence[ChatTurn], model: str, session_start: datetime) -> str:
    lines: list[str] = []
    lines.append("# Vault Agent Chat Export")
    lines.append("")
    lines.append(f"**Date**: {session_start:%Y-%m-%d %H:%M:%S}")
    lines.append(f"**Model**: {model}")
    lines.append(f"**Turns**: {sum(1 for t in turns if t.role == 'user')}")
    lines.append("")
    lines.append("---")
    lines.append("")

    for turn in turns:
        if turn.role == "user":
            lines.append("## User")
            lines.append("")
            lines.append(turn.content)
            lines.append("")
            continue

        lines.append("## Assistant")
        if turn.tools_used:
            lines.append("")
            lines.append(f"*Tools used: {', '.join(turn.tools_used)}*")
        lines.append("")
        lines.append("*Cancelled by user*" if turn.cancelled else turn.content)
        lines.append("")
        lines.append("---")
        lines.append("")

    return "\n".join(lines)
