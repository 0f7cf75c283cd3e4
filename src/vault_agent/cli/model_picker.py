"""Arrow-key model selection shown at start-up."""

from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from ..services.ollama_client import ModelInfo
from .keys import Key, KeyEvent, KeyReader, iter_key_events
from .terminal import CYAN, GRAY, GREEN, RST

RED = "\033[31m"
CLEAR_LINE = "\033[2K"


class ModelPicker:
    """Lists tool-capable models first (selectable) and ineligible ones greyed out below."""

    def __init__(self, models: list[ModelInfo], out: TextIO | None = None) -> None:
        self.eligible = [m for m in models if m.supports_tools]
        self.ineligible = [m for m in models if not m.supports_tools]
        self.selected = 0
        self.out = out or sys.stdout
        self.done = False
        self.aborted = False

    @property
    def choice(self) -> str | None:
        if self.aborted or not self.eligible:
            return None
        return self.eligible[self.selected].name

    @property
    def height(self) -> int:
        # header, blank, one per model, blank, helper
        return 4 + len(self.eligible) + len(self.ineligible)

    def _eligible_line(self, index: int, m: ModelInfo) -> str:
        if index == self.selected:
            prefix, name = f"{GREEN}  ▸ {RST}", f"{GREEN}{m.name}{RST}"
        else:
            prefix, name = "    ", m.name
        thinking = f"{CYAN} ✓{RST}{GRAY} thinking{RST}" if m.supports_thinking else f"{GRAY} ✗ thinking{RST}"
        return f"{prefix}{name}{GRAY} ({m.size}){RST}{CYAN} ✓{RST}{GRAY} tools{RST}{thinking}"

    def lines(self) -> list[str]:
        out = [f"{CYAN}  Select a model (choose from {len(self.eligible)} available below):{RST}", ""]
        out.extend(self._eligible_line(i, m) for i, m in enumerate(self.eligible))
        out.extend(
            f"{GRAY}    {m.name} ({m.size}){RST}{RED} ✗{RST}{GRAY} ineligible - no tool support{RST}"
            for m in self.ineligible
        )
        out.append("")
        out.append(f"{GRAY}  ↑↓ to select, Enter to confirm{RST}")
        return out

    def render(self, initial: bool = False) -> None:
        text = "" if initial else f"\033[{self.height}A"
        text += "".join(f"\r{CLEAR_LINE}{line}\n" for line in self.lines())
        self.out.write(text)
        self.out.flush()

    def handle_key(self, event: KeyEvent) -> None:
        if event.key is Key.CTRL_C:
            self.aborted = True
            self.done = True
        elif event.key is Key.ENTER:
            self.done = True
        elif event.key is Key.UP and self.selected > 0:
            self.selected -= 1
            self.render()
        elif event.key is Key.DOWN and self.selected < len(self.eligible) - 1:
            self.selected += 1
            self.render()


async def select_model(models: list[ModelInfo], key_reader: KeyReader, out: TextIO | None = None) -> str | None:
    """Let the user pick a tool-capable model; returns None on Ctrl+C."""
    picker = ModelPicker(models, out=out)
    finished: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def on_chunk(chunk: str) -> None:
        for event in iter_key_events(chunk):
            if picker.done:
                break
            picker.handle_key(event)
        if picker.done and not finished.done():
            finished.set_result(None)

    picker.out.write("\n")
    picker.render(initial=True)
    key_reader.add_listener(on_chunk)
    try:
        await finished
    finally:
        key_reader.remove_listener(on_chunk)
    return picker.choice
