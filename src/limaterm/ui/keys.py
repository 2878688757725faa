"""Key and paste encoding for the terminal view."""

from __future__ import annotations

_SPECIAL_KEYS = {
    "Backspace": b"\x7f",
    "Return": b"\r",
    "Enter": b"\r",
    "Tab": b"\t",
    "Backtab": b"\x1b[Z",
    "Escape": b"\x1b",
    "Home": b"\x1b[H",
    "End": b"\x1b[F",
    "PageUp": b"\x1b[5~",
    "PageDown": b"\x1b[6~",
    "Insert": b"\x1b[2~",
    "Delete": b"\x1b[3~",
    "F1": b"\x1bOP",
    "F2": b"\x1bOQ",
    "F3": b"\x1bOR",
    "F4": b"\x1bOS",
    "F5": b"\x1b[15~",
    "F6": b"\x1b[17~",
    "F7": b"\x1b[18~",
    "F8": b"\x1b[19~",
    "F9": b"\x1b[20~",
    "F10": b"\x1b[21~",
    "F11": b"\x1b[23~",
    "F12": b"\x1b[24~",
}

_ARROWS = {"Up": b"A", "Down": b"B", "Right": b"C", "Left": b"D"}

PASTE_START = b"\x1b[200~"
PASTE_END = b"\x1b[201~"


def encode_key(
    key: str,
    text: str = "",
    *,
    ctrl: bool = False,
    alt: bool = False,
    application_cursor: bool = False,
) -> bytes | None:
    """Return the byte sequence an xterm-compatible terminal sends for a key press."""
    if key in _ARROWS:
        return (b"\x1bO" if application_cursor else b"\x1b[") + _ARROWS[key]
    if key in _SPECIAL_KEYS:
        return _SPECIAL_KEYS[key]
    if ctrl and len(key) == 1 and key.isalpha():
        return bytes([ord(key.upper()) - ord("A") + 1])
    if ctrl and key == "Space":
        return b"\x00"
    if not text:
        return None
    payload = text.encode("utf-8")
    return b"\x1b" + payload if alt else payload


def encode_paste(text: str, *, bracketed: bool) -> bytes:
    payload = text.replace("\r\n", "\r").replace("\n", "\r").encode("utf-8")
    if not bracketed:
        return payload
    # A pasted end marker would let the clipboard escape bracketed mode.
    payload = payload.replace(PASTE_END, b"")
    return PASTE_START + payload + PASTE_END
