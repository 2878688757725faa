"""Incremental OSC 7 (current working directory) parser for PTY output."""

from __future__ import annotations

from enum import Enum
from urllib.parse import unquote_to_bytes

ESC = 0x1B
BEL = 0x07
MAX_URI_BYTES = 4096


class _State(Enum):
    GROUND = 0
    ESC = 1
    OSC = 2
    OSC7 = 3
    COLLECTING = 4
    ESC_IN_OSC = 5


class Osc7Parser:
    """Extracts paths from ``ESC ] 7 ; file://host/path`` terminated by BEL or ESC \\.

    State is kept between feed() calls, so a sequence split across PTY reads
    is still recognized.
    """

    def __init__(self) -> None:
        self._state = _State.GROUND
        self._buffer = bytearray()

    def feed(self, data: bytes) -> str | None:
        """Consume a chunk; return the last complete cwd seen in it, if any."""
        last_cwd: str | None = None
        for byte in data:
            state = self._state
            if state is _State.GROUND:
                if byte == ESC:
                    self._state = _State.ESC
            elif state is _State.ESC:
                self._state = _State.OSC if byte == ord("]") else _State.GROUND
            elif state is _State.OSC:
                self._state = _State.OSC7 if byte == ord("7") else _State.GROUND
            elif state is _State.OSC7:
                if byte == ord(";"):
                    self._buffer.clear()
                    self._state = _State.COLLECTING
                else:
                    self._state = _State.GROUND
            elif state is _State.COLLECTING:
                if byte == BEL:
                    last_cwd = self._extract() or last_cwd
                    self._state = _State.GROUND
                elif byte == ESC:
                    self._state = _State.ESC_IN_OSC
                elif len(self._buffer) < MAX_URI_BYTES:
                    self._buffer.append(byte)
                else:
                    self._state = _State.GROUND
            elif state is _State.ESC_IN_OSC:
                if byte == ord("\\"):
                    last_cwd = self._extract() or last_cwd
                    self._state = _State.GROUND
                elif byte == ord("]"):
                    self._state = _State.OSC
                else:
                    self._state = _State.GROUND
        return last_cwd

    def _extract(self) -> str | None:
        return extract_path(bytes(self._buffer))


def extract_path(uri: bytes) -> str | None:
    """Return the percent-decoded path of a ``file://host/path`` URI."""
    prefix = b"file://"
    if not uri.startswith(prefix):
        return None
    rest = uri[len(prefix) :]
    start = rest.find(b"/")
    if start < 0:
        return None
    return unquote_to_bytes(rest[start:]).decode("utf-8", errors="replace")
