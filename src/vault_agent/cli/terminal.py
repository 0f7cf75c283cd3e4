"""Line renderer for the framed input prompt.

Everything here is drawn with cursor movement and line-clear escape codes only.
The layout is four lines, with the cursor parked on the input line::

    ──────────────   top border
    > buffer         input line  <- cursor
    ──────────────   bottom border
    ? shortcuts ...  hint line
    [overlay panel]  optional, starting on the line below the hints
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import TextIO

LINE_WIDTH = 56
PROMPT = "  > "

# ANSI color codes (inlined; the prompt is written straight to the terminal)
CYAN = "\033[36m"
GRAY = "\033[90m"
GREEN = "\033[32m"
RST = "\033[0m"

SAVE_CURSOR = "\033[s"
RESTORE_CURSOR = "\033[u"
CLEAR_TO_EOL = "\033[K"

# Lines between the input line and the first overlay line (bottom border, hints)
_PANEL_OFFSET = 3


class Panel(Enum):
    SHORTCUTS = "shortcuts"
    COMMANDS = "commands"


def _rule() -> str:
    return "─" * LINE_WIDTH


_PANEL_LINES: dict[Panel, list[str]] = {
    Panel.SHORTCUTS: [
        f"{GRAY}  {_rule()}{RST}",
        f"{CYAN}  Shortcuts:{RST}",
        f"{GRAY}    Tab       {RST}Toggle thinking visibility",
        f"{GRAY}    ↑/↓       {RST}Navigate command history",
        f"{GRAY}    Esc       {RST}Cancel a running request",
        f"{GRAY}    Ctrl+C    {RST}Exit",
        f"{GRAY}  (backspace to dismiss){RST}",
    ],
    Panel.COMMANDS: [
        f"{GRAY}  {_rule()}{RST}",
        f"{CYAN}  Commands:{RST}",
        f"{GRAY}    /servers       {RST}List connected MCP servers",
        f"{GRAY}    /tools         {RST}List available tools",
        f"{GRAY}    /vault <path>  {RST}Switch to different vault",
        f"{GRAY}    /models        {RST}List models",
        f"{GRAY}    /model <name>  {RST}Switch model",
        f"{GRAY}    /export [file] {RST}Export chat to markdown",
        f"{GRAY}    /clear         {RST}Clear history",
        f"{GRAY}    /help          {RST}Show help",
        f"{GRAY}    /quit          {RST}Exit {GRAY}(or /exit, /bye){RST}",
        f"{GRAY}  (type command or backspace to dismiss){RST}",
    ],
}


def panel_height(panel: Panel) -> int:
    return len(_PANEL_LINES[panel])


def hint_line(thinking_enabled: bool, model_supports_thinking: bool) -> str:
    hints = [f"{GRAY}? shortcuts{RST}", f"{GRAY}/ commands{RST}"]
    if model_supports_thinking:
        if thinking_enabled:
            status = f"{CYAN}✓{RST}{GREEN} Thinking visible{RST}"
        else:
            status = f"{GRAY}✗ Thinking hidden{RST}"
        hints.append(status + f"{GRAY} (tab){RST}")
    return "  " + "    ".join(hints)


class PromptRenderer:
    def __init__(self, out: TextIO | None = None) -> None:
        self.out = out or sys.stdout

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def _cursor_to_input(self, buffer_len: int) -> str:
        return f"\r\033[{len(PROMPT) + buffer_len}C"

    def draw_prompt(self, buffer: str, thinking_enabled: bool, model_supports_thinking: bool) -> None:
        """Paint the whole prompt below the current line and park the cursor after the buffer."""
        rule = f"{CYAN}  {_rule()}{RST}"
        self._write(
            f"{rule}\n"
            f"{CYAN}{PROMPT}{RST}{buffer}\n"
            f"{rule}\n"
            f"{hint_line(thinking_enabled, model_supports_thinking)}"
            f"\033[3A{self._cursor_to_input(len(buffer))}"
        )

    def echo(self, text: str) -> None:
        self._write(text)

    def erase_chars(self, count: int = 1) -> None:
        if count > 0:
            self._write("\b \b" * count)

    def redraw_input(self, buffer: str) -> None:
        self._write(f"\r{CLEAR_TO_EOL}{CYAN}{PROMPT}{RST}{buffer}")

    def repaint_hints(self, thinking_enabled: bool, model_supports_thinking: bool) -> None:
        self._write(
            f"{SAVE_CURSOR}\n\n{CLEAR_TO_EOL}"
            f"{hint_line(thinking_enabled, model_supports_thinking)}"
            f"{RESTORE_CURSOR}"
        )

    def show_panel(self, panel: Panel, buffer_len: int) -> None:
        lines = _PANEL_LINES[panel]
        depth = _PANEL_OFFSET + len(lines) - 1
        # Scroll first if needed so the saved cursor position stays valid
        reserve = "\n" * depth + f"\033[{depth}A" + self._cursor_to_input(buffer_len)
        body = "\n".join(f"{CLEAR_TO_EOL}{line}" for line in lines)
        self._write(f"{reserve}{SAVE_CURSOR}" + "\n" * _PANEL_OFFSET + body + RESTORE_CURSOR)

    def clear_panel(self, panel: Panel, thinking_enabled: bool, model_supports_thinking: bool) -> None:
        """Blank the overlay lines and restore the hint line it sat under."""
        cleared = "\n".join(CLEAR_TO_EOL for _ in range(panel_height(panel)))
        self._write(f"{SAVE_CURSOR}" + "\n" * _PANEL_OFFSET + cleared + RESTORE_CURSOR)
        self.repaint_hints(thinking_enabled, model_supports_thinking)

    def finish_input(self) -> None:
        """Move below the hint line so output starts under the prompt."""
        self._write("\n" * _PANEL_OFFSET)
