"""Keystroke-driven input state machine for the raw-mode prompt."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .keys import Key, KeyEvent, iter_key_events
from .terminal import Panel, PromptRenderer

logger = logging.getLogger(__name__)


class Overlay(Enum):
    NONE = "none"
    SHORTCUTS = "shortcuts"
    COMMANDS = "commands"


_OVERLAY_PANELS = {Overlay.SHORTCUTS: Panel.SHORTCUTS, Overlay.COMMANDS: Panel.COMMANDS}


@dataclass
class InputState:
    buffer: str = ""
    history: list[str] = field(default_factory=list)
    history_index: int = 0
    thinking_enabled: bool = False
    model_supports_thinking: bool = False
    overlay: Overlay = Overlay.NONE
    waiting: bool = False

    @property
    def cursor_pos(self) -> int:
        # No mid-line editing: the cursor always sits at the end of the buffer
        return len(self.buffer)


@dataclass(frozen=True)
class InputAction:
    kind: str  # "submit" or "exit"
    text: str = ""

    @classmethod
    def submit(cls, text: str) -> InputAction:
        return cls(kind="submit", text=text)

    @classmethod
    def exit(cls) -> InputAction:
        return cls(kind="exit")


class InputStateMachine:
    def __init__(self, renderer: PromptRenderer, model_supports_thinking: bool = False) -> None:
        self.renderer = renderer
        self.state = InputState(
            thinking_enabled=model_supports_thinking,
            model_supports_thinking=model_supports_thinking,
        )

    @property
    def thinking_enabled(self) -> bool:
        return self.state.thinking_enabled

    @property
    def waiting(self) -> bool:
        return self.state.waiting

    def set_waiting(self, waiting: bool) -> None:
        self.state.waiting = waiting

    def update_model(self, supports_thinking: bool) -> None:
        self.state.model_supports_thinking = supports_thinking
        if not supports_thinking:
            self.state.thinking_enabled = False

    def show_prompt(self) -> None:
        s = self.state
        self.renderer.draw_prompt(s.buffer, s.thinking_enabled, s.model_supports_thinking)

    def feed(self, chunk: str) -> list[InputAction]:
        """Process a raw stdin chunk; keys after a submit in the same chunk are dropped."""
        actions: list[InputAction] = []
        for event in iter_key_events(chunk):
            action = self.handle_key(event)
            if action is None:
                continue
            actions.append(action)
            if action.kind == "submit":
                logger.debug("Dropping keys typed after submit in the same chunk")
                break
        return actions

    def handle_key(self, event: KeyEvent) -> InputAction | None:
        s = self.state

        if event.key is Key.CTRL_C:
            return InputAction.exit()

        # Bare Escape during a request is picked up by the round-trip runner's own listener
        if s.waiting:
            return None

        if s.overlay is Overlay.SHORTCUTS:
            self._dismiss_overlay()
            if event.key in (Key.BACKSPACE, Key.ESCAPE):
                return None

        if s.overlay is Overlay.COMMANDS:
            if event.key is Key.ESCAPE:
                self._dismiss_overlay()
                self.renderer.erase_chars(len(s.buffer))
                s.buffer = ""
                return None
            if event.key is Key.BACKSPACE:
                if len(s.buffer) <= 1:
                    self._dismiss_overlay()
                s.buffer = s.buffer[:-1]
                self.renderer.erase_chars(1)
                return None
            if event.key is Key.CHAR:
                self._append(event.text)
                return None
            if event.key is not Key.ENTER:
                return None
            self._dismiss_overlay()

        if event.key is Key.TAB:
            if s.model_supports_thinking:
                s.thinking_enabled = not s.thinking_enabled
                self.renderer.repaint_hints(s.thinking_enabled, s.model_supports_thinking)
            return None

        if event.key is Key.ENTER:
            return self._submit()

        if event.key is Key.BACKSPACE:
            if s.buffer:
                s.buffer = s.buffer[:-1]
                self.renderer.erase_chars(1)
            return None

        if event.key is Key.UP:
            if s.history_index > 0:
                s.history_index -= 1
                s.buffer = s.history[s.history_index]
                self.renderer.redraw_input(s.buffer)
            return None

        if event.key is Key.DOWN:
            if s.history_index < len(s.history) - 1:
                s.history_index += 1
                s.buffer = s.history[s.history_index]
            else:
                s.history_index = len(s.history)
                s.buffer = ""
            self.renderer.redraw_input(s.buffer)
            return None

        if event.key is Key.CHAR:
            if not s.buffer and event.text == "?":
                self._open_overlay(Overlay.SHORTCUTS)
            elif not s.buffer and event.text == "/":
                self._append("/")
                self._open_overlay(Overlay.COMMANDS)
            else:
                self._append(event.text)
        return None

    def _append(self, text: str) -> None:
        self.state.buffer += text
        self.renderer.echo(text)

    def _submit(self) -> InputAction | None:
        s = self.state
        text = s.buffer.strip()
        s.buffer = ""
        if not text:
            self.renderer.redraw_input("")
            return None
        s.history.append(text)
        s.history_index = len(s.history)
        self.renderer.finish_input()
        return InputAction.submit(text)

    def _open_overlay(self, overlay: Overlay) -> None:
        self.state.overlay = overlay
        self.renderer.show_panel(_OVERLAY_PANELS[overlay], self.state.cursor_pos)

    def _dismiss_overlay(self) -> None:
        s = self.state
        panel = _OVERLAY_PANELS[s.overlay]
        s.overlay = Overlay.NONE
        self.renderer.clear_panel(panel, s.thinking_enabled, s.model_supports_thinking)
