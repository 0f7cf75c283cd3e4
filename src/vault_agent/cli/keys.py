"""Raw keyboard input: decoding terminal chunks into key events, and the stdin reader."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator

logger = logging.getLogger(__name__)

ESC = "\x1b"
ARROW_UP = "\x1b[A"
ARROW_DOWN = "\x1b[B"

KeyListener = Callable[[str], None]


class Key(Enum):
    CTRL_C = "ctrl_c"
    TAB = "tab"
    ENTER = "enter"
    BACKSPACE = "backspace"
    ESCAPE = "escape"
    UP = "up"
    DOWN = "down"
    CHAR = "char"
    SEQUENCE = "sequence"  # any escape sequence other than the two arrows
    OTHER = "other"


@dataclass(frozen=True)
class KeyEvent:
    key: Key
    text: str = ""


def _split_sequences(data: str) -> Iterator[str]:
    """Split a chunk into single characters and whole escape sequences."""
    i = 0
    n = len(data)
    while i < n:
        ch = data[i]
        if ch != ESC or i + 1 >= n:
            yield ch
            i += 1
            continue
        nxt = data[i + 1]
        if nxt in "[O":
            # CSI / SS3: parameters then a single final byte in 0x40-0x7E
            j = i + 2
            while j < n and not ("\x40" <= data[j] <= "\x7e"):
                j += 1
            yield data[i : j + 1]
            i = j + 1
        else:
            # Alt+key and similar two-byte sequences
            yield data[i : i + 2]
            i += 2


def parse_key(seq: str) -> KeyEvent:
    if seq == "\x03":
        return KeyEvent(Key.CTRL_C)
    if seq == "\t":
        return KeyEvent(Key.TAB)
    if seq in ("\r", "\n"):
        return KeyEvent(Key.ENTER)
    if seq in ("\x7f", "\x08"):
        return KeyEvent(Key.BACKSPACE)
    if seq == ESC:
        return KeyEvent(Key.ESCAPE)
    if seq == ARROW_UP:
        return KeyEvent(Key.UP)
    if seq == ARROW_DOWN:
        return KeyEvent(Key.DOWN)
    if seq.startswith(ESC):
        return KeyEvent(Key.SEQUENCE, seq)
    if len(seq) == 1 and 32 <= ord(seq) <= 126:
        return KeyEvent(Key.CHAR, seq)
    return KeyEvent(Key.OTHER, seq)


def iter_key_events(data: str) -> Iterator[KeyEvent]:
    for seq in _split_sequences(data):
        yield parse_key(seq)


def is_bare_escape(chunk: str) -> bool:
    """True only for a lone ESC; arrow keys and other sequences arrive as 2+ bytes together."""
    return chunk == ESC


class KeyReader:
    """Puts the terminal into raw mode and fans each stdin chunk out to registered listeners.

    Runs on the event loop via ``add_reader``; listeners are plain callables invoked
    synchronously with the decoded chunk, in registration order.
    """

    def __init__(self, fd: int | None = None) -> None:
        self._fd = sys.stdin.fileno() if fd is None else fd
        self._listeners: list[KeyListener] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._saved_mode: list | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def add_listener(self, listener: KeyListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: KeyListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            logger.debug("Listener %r already removed", listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, chunk: str) -> None:
        for listener in list(self._listeners):
            listener(chunk)

    def start(self) -> None:
        self._enter_raw_mode()
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(self._fd, self._on_readable)

    def stop(self) -> None:
        if self._loop is not None:
            self._loop.remove_reader(self._fd)
            self._loop = None
        self._restore_mode()

    def _on_readable(self) -> None:
        try:
            data = os.read(self._fd, 1024)
        except OSError as e:
            logger.warning("Failed to read from stdin: %s", e)
            return
        if not data:
            return
        chunk = self._decoder.decode(data)
        if chunk:
            self.dispatch(chunk)

    def _enter_raw_mode(self) -> None:
        if not os.isatty(self._fd):
            return
        import termios

        self._saved_mode = termios.tcgetattr(self._fd)
        mode = termios.tcgetattr(self._fd)
        mode[0] &= ~(termios.BRKINT | termios.ICRNL | termios.INPCK | termios.ISTRIP | termios.IXON)
        # Output post-processing stays on so "\n" still returns the carriage
        mode[3] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
        mode[6][termios.VMIN] = 1
        mode[6][termios.VTIME] = 0
        termios.tcsetattr(self._fd, termios.TCSAFLUSH, mode)

    def _restore_mode(self) -> None:
        if self._saved_mode is None:
            return
        import termios

        termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_mode)
        self._saved_mode = None
