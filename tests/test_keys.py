from __future__ import annotations

import pytest

from limaterm.ui.keys import PASTE_END, PASTE_START, encode_key, encode_paste


@pytest.mark.parametrize(
    ("key", "normal", "application"),
    [("Up", b"\x1b[A", b"\x1bOA"), ("Left", b"\x1b[D", b"\x1bOD")],
)
def test_arrow_keys_follow_cursor_mode(key: str, normal: bytes, application: bytes) -> None:
    assert encode_key(key) == normal
    assert encode_key(key, application_cursor=True) == application


def test_special_keys() -> None:
    assert encode_key("Return") == b"\r"
    assert encode_key("Backspace") == b"\x7f"
    assert encode_key("Delete") == b"\x1b[3~"
    assert encode_key("F1") == b"\x1bOP"
    assert encode_key("F12") == b"\x1b[24~"


def test_control_combinations() -> None:
    assert encode_key("c", ctrl=True) == b"\x03"
    assert encode_key("D", ctrl=True) == b"\x04"
    assert encode_key("Space", ctrl=True) == b"\x00"


def test_text_and_alt_prefix() -> None:
    assert encode_key("a", "a") == b"a"
    assert encode_key("ü", "ü") == "ü".encode()
    assert encode_key("b", "b", alt=True) == b"\x1bb"


def test_modifier_only_keys_produce_nothing() -> None:
    assert encode_key("Shift") is None


def test_plain_paste_converts_newlines_to_carriage_returns() -> None:
    assert encode_paste("ls\r\ncd /tmp\n", bracketed=False) == b"ls\rcd /tmp\r"


def test_bracketed_paste_wraps_and_strips_embedded_end_marker() -> None:
    payload = encode_paste("echo hi\x1b[201~rm -rf x\n", bracketed=True)

    assert payload.startswith(PASTE_START)
    assert payload.endswith(PASTE_END)
    assert payload.count(PASTE_END) == 1
    assert payload == PASTE_START + b"echo hirm -rf x\r" + PASTE_END
