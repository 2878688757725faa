"""Local character grid backed by the pyte VT emulator."""

from __future__ import annotations

import threading
from collections.abc import Callable

import pyte
from pyte import modes

from limaterm.terminal.models import DEFAULT_COLS, DEFAULT_ROWS

DEFAULT_SCROLLBACK = 5000

# pyte stores DEC private modes shifted left by 5.
FOCUS_REPORTING_MODE = 1004 << 5
BRACKETED_PASTE_MODE = 2004 << 5
APPLICATION_CURSOR_MODE = 1 << 5  # DECCKM; pyte.modes does not export it

ReplyHandler = Callable[[bytes], None]


class _ReplyingScreen(pyte.HistoryScreen):
    def __init__(self, columns: int, lines: int, *, history: int, on_reply: ReplyHandler | None) -> None:
        super().__init__(columns, lines, history=history)
        self._on_reply = on_reply

    def write_process_input(self, data: str) -> None:
        if self._on_reply is not None:
            self._on_reply(data.encode("utf-8"))


class ScreenGrid:
    """Thread-safe wrapper satisfying the TerminalGrid protocol.

    Device replies the emulator produces (cursor position, device attributes)
    are handed to ``on_reply`` so the view can forward them to the process.
    """

    def __init__(
        self,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
        *,
        history: int = DEFAULT_SCROLLBACK,
        on_reply: ReplyHandler | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._screen = _ReplyingScreen(cols, rows, history=history, on_reply=on_reply)
        self._screen.set_mode(modes.DECAWM)
        self._stream = pyte.ByteStream(self._screen)
        self.resize_count = 0

    @property
    def cols(self) -> int:
        return int(self._screen.columns)

    @property
    def rows(self) -> int:
        return int(self._screen.lines)

    def set_reply_handler(self, handler: ReplyHandler | None) -> None:
        self._screen._on_reply = handler

    def resize(self, cols: int, rows: int) -> None:
        with self._lock:
            if (cols, rows) == (self.cols, self.rows):
                return
            self._screen.resize(lines=rows, columns=cols)
            self.resize_count += 1

    def write(self, data: bytes) -> None:
        with self._lock:
            self._stream.feed(data)

    def display(self) -> list[str]:
        with self._lock:
            return list(self._screen.display)

    def cursor(self) -> tuple[int, int]:
        with self._lock:
            return (self._screen.cursor.x, self._screen.cursor.y)

    def cursor_visible(self) -> bool:
        return not self._screen.cursor.hidden

    def title(self) -> str:
        return str(self._screen.title or "")

    def take_dirty(self) -> set[int]:
        with self._lock:
            dirty = set(self._screen.dirty)
            self._screen.dirty.clear()
            return dirty

    @property
    def focus_reporting(self) -> bool:
        return FOCUS_REPORTING_MODE in self._screen.mode

    @property
    def bracketed_paste(self) -> bool:
        return BRACKETED_PASTE_MODE in self._screen.mode

    @property
    def application_cursor(self) -> bool:
        return APPLICATION_CURSOR_MODE in self._screen.mode
