"""Tests for the raw-mode input state machine."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import pytest

from vault_agent.cli.input_handler import InputAction, InputStateMachine, Overlay
from vault_agent.cli.keys import ARROW_DOWN, ARROW_UP, ESC
from vault_agent.cli.terminal import Panel, PromptRenderer, hint_line


def _machine(supports_thinking: bool = False) -> InputStateMachine:
    return InputStateMachine(MagicMock(spec=PromptRenderer), supports_thinking)


def _submit_all(machine: InputStateMachine, *texts: str) -> None:
    for text in texts:
        assert machine.feed(text + "\r") == [InputAction.submit(text)]


class TestTyping:
    @pytest.mark.parametrize("keys", ["", "a", "hello world", "~!@#$%^&*()_+{}|:<>", "a?b/c"])
    def test_buffer_is_concatenation_of_printable_keys(self, keys: str) -> None:
        machine = _machine()
        typed = ""
        for ch in keys:
            machine.feed(ch)
            typed += ch
            assert machine.state.buffer == typed
            assert machine.state.cursor_pos == len(typed)

    def test_printable_keys_are_echoed(self) -> None:
        machine = _machine()
        machine.feed("hi")
        machine.renderer.echo.assert_any_call("h")
        machine.renderer.echo.assert_any_call("i")

    def test_control_bytes_are_ignored(self) -> None:
        machine = _machine()
        machine.feed("a\x01\x02b")
        assert machine.state.buffer == "ab"

    def test_backspace_removes_last_char(self) -> None:
        machine = _machine()
        machine.feed("abc\x7f")
        assert machine.state.buffer == "ab"
        machine.renderer.erase_chars.assert_called_once_with(1)

    def test_backspace_on_empty_buffer_is_noop(self) -> None:
        machine = _machine()
        machine.feed("\x7f")
        assert machine.state.buffer == ""
        machine.renderer.erase_chars.assert_not_called()

    def test_other_escape_sequences_are_ignored(self) -> None:
        machine = _machine()
        machine.feed("ab\x1b[C\x1b[3~")
        assert machine.state.buffer == "ab"


class TestSubmit:
    def test_enter_submits_trimmed_text(self) -> None:
        machine = _machine()
        actions = machine.feed("  hello  \r")
        assert actions == [InputAction.submit("hello")]
        assert machine.state.buffer == ""
        assert machine.state.history == ["hello"]
        assert machine.state.history_index == 1
        machine.renderer.finish_input.assert_called_once()

    def test_empty_submit_is_ignored(self) -> None:
        machine = _machine()
        assert machine.feed("   \r") == []
        assert machine.state.history == []
        machine.renderer.finish_input.assert_not_called()
        machine.renderer.redraw_input.assert_called_with("")

    def test_keys_after_submit_in_same_chunk_are_dropped(self) -> None:
        machine = _machine()
        actions = machine.feed("one\rtwo")
        assert actions == [InputAction.submit("one")]
        assert machine.state.buffer == ""

    def test_ctrl_c_exits(self) -> None:
        machine = _machine()
        assert machine.feed("\x03") == [InputAction.exit()]

    def test_ctrl_c_exits_while_waiting(self) -> None:
        machine = _machine()
        machine.set_waiting(True)
        assert machine.feed("\x03") == [InputAction.exit()]


class TestHistory:
    def test_up_walks_back_with_floor(self) -> None:
        machine = _machine()
        _submit_all(machine, "a", "b", "c")

        seen = []
        for _ in range(4):
            machine.feed(ARROW_UP)
            seen.append(machine.state.buffer)
        assert seen == ["c", "b", "a", "a"]
        assert machine.state.history_index == 0

    def test_down_walks_forward_to_empty(self) -> None:
        machine = _machine()
        _submit_all(machine, "a", "b", "c")
        for _ in range(3):
            machine.feed(ARROW_UP)
        assert machine.state.buffer == "a"

        seen = []
        for _ in range(3):
            machine.feed(ARROW_DOWN)
            seen.append(machine.state.buffer)
        assert seen == ["b", "c", ""]
        assert machine.state.history_index == 3

    def test_history_index_stays_in_bounds(self) -> None:
        machine = _machine()
        machine.feed(ARROW_UP + ARROW_DOWN + ARROW_DOWN)
        assert machine.state.history_index == 0
        _submit_all(machine, "x")
        machine.feed(ARROW_DOWN * 3)
        assert 0 <= machine.state.history_index <= len(machine.state.history)

    def test_navigation_redraws_whole_line(self) -> None:
        machine = _machine()
        _submit_all(machine, "first")
        machine.feed(ARROW_UP)
        machine.renderer.redraw_input.assert_called_with("first")


class TestThinkingToggle:
    def test_tab_toggles_when_supported(self) -> None:
        machine = _machine(supports_thinking=True)
        assert machine.thinking_enabled is True
        machine.feed("\t")
        assert machine.thinking_enabled is False
        machine.renderer.repaint_hints.assert_called_once_with(False, True)

    def test_tab_ignored_when_unsupported(self) -> None:
        machine = _machine(supports_thinking=False)
        machine.feed("\t")
        assert machine.thinking_enabled is False
        machine.renderer.repaint_hints.assert_not_called()

    def test_tab_does_not_touch_buffer(self) -> None:
        machine = _machine(supports_thinking=True)
        machine.feed("ab\t")
        assert machine.state.buffer == "ab"

    def test_update_model_without_thinking_turns_it_off(self) -> None:
        machine = _machine(supports_thinking=True)
        machine.update_model(False)
        assert machine.thinking_enabled is False
        assert machine.state.model_supports_thinking is False


class TestShortcutsOverlay:
    def test_question_mark_opens_overlay_on_empty_buffer(self) -> None:
        machine = _machine()
        machine.feed("?")
        assert machine.state.overlay is Overlay.SHORTCUTS
        assert machine.state.buffer == ""
        machine.renderer.show_panel.assert_called_once_with(Panel.SHORTCUTS, 0)

    def test_question_mark_is_typed_when_buffer_non_empty(self) -> None:
        machine = _machine()
        machine.feed("why?")
        assert machine.state.overlay is Overlay.NONE
        assert machine.state.buffer == "why?"

    @pytest.mark.parametrize("key", ["\x7f", ESC])
    def test_backspace_or_escape_dismisses_and_is_consumed(self, key: str) -> None:
        machine = _machine()
        machine.feed("?")
        machine.feed(key)
        assert machine.state.overlay is Overlay.NONE
        assert machine.state.buffer == ""
        machine.renderer.clear_panel.assert_called_once()

    def test_other_key_dismisses_then_is_processed(self) -> None:
        machine = _machine()
        machine.feed("?")
        machine.feed("x")
        assert machine.state.overlay is Overlay.NONE
        assert machine.state.buffer == "x"

    @pytest.mark.parametrize("thinking", [True, False])
    @pytest.mark.parametrize("supports", [True, False])
    def test_dismissal_restores_hint_line_exactly(self, thinking: bool, supports: bool) -> None:
        out = io.StringIO()
        machine = InputStateMachine(PromptRenderer(out), supports)
        machine.state.thinking_enabled = thinking and supports
        expected = hint_line(machine.state.thinking_enabled, supports)

        machine.show_prompt()
        assert expected in out.getvalue()

        out.seek(0)
        out.truncate()
        machine.feed("?")
        machine.feed("\x7f")
        repaint = out.getvalue().rsplit("\033[s", 1)[-1]
        assert repaint == f"\n\n\033[K{expected}\033[u"


class TestCommandsOverlay:
    def test_slash_opens_overlay_and_is_kept_in_buffer(self) -> None:
        machine = _machine()
        machine.feed("/")
        assert machine.state.overlay is Overlay.COMMANDS
        assert machine.state.buffer == "/"
        machine.renderer.show_panel.assert_called_once_with(Panel.COMMANDS, 1)

    def test_typing_keeps_overlay_open(self) -> None:
        machine = _machine()
        machine.feed("/too")
        assert machine.state.overlay is Overlay.COMMANDS
        assert machine.state.buffer == "/too"

    def test_enter_dismisses_and_submits(self) -> None:
        machine = _machine()
        actions = machine.feed("/tools\r")
        assert actions == [InputAction.submit("/tools")]
        assert machine.state.overlay is Overlay.NONE
        machine.renderer.clear_panel.assert_called_once()

    def test_escape_clears_buffer_and_dismisses(self) -> None:
        machine = _machine()
        machine.feed("/mod")
        machine.feed(ESC)
        assert machine.state.overlay is Overlay.NONE
        assert machine.state.buffer == ""
        machine.renderer.erase_chars.assert_called_with(4)

    def test_backspace_past_slash_dismisses(self) -> None:
        machine = _machine()
        machine.feed("/m")
        machine.feed("\x7f")
        assert machine.state.overlay is Overlay.COMMANDS
        assert machine.state.buffer == "/"
        machine.feed("\x7f")
        assert machine.state.overlay is Overlay.NONE
        assert machine.state.buffer == ""

    def test_arrows_and_tab_ignored(self) -> None:
        machine = _machine(supports_thinking=True)
        _submit_all(machine, "earlier")
        machine.feed("/x")
        machine.feed(ARROW_UP + "\t")
        assert machine.state.buffer == "/x"
        assert machine.thinking_enabled is True


class TestWaiting:
    def test_keys_ignored_while_waiting(self) -> None:
        machine = _machine(supports_thinking=True)
        machine.set_waiting(True)
        assert machine.feed("abc\r\t?" + ESC) == []
        assert machine.state.buffer == ""
        assert machine.thinking_enabled is True
        assert machine.state.overlay is Overlay.NONE

    def test_typing_resumes_after_waiting(self) -> None:
        machine = _machine()
        machine.set_waiting(True)
        machine.feed("ignored")
        machine.set_waiting(False)
        machine.feed("ok")
        assert machine.state.buffer == "ok"
