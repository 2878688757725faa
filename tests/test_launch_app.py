from __future__ import annotations

import time
from pathlib import Path

import pytest

from limaterm.config import AppConfig
from limaterm.terminal.models import SpawnOptions
from limaterm.terminal import persistence
from limaterm.terminal.persistence import SavedSession, load_session_history
from limaterm.ui import app as app_module


class _Registry:
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def save_all_sessions(self, directory: str) -> list[str]:
        self.calls.append(("save", directory))
        return []

    def close_all(self) -> None:
        self.calls.append(("close_all", None))


class _Scheduler:
    def call_later(self, delay_ms, callback):  # type: ignore[no-untyped-def]
        raise AssertionError("not scheduled in this test")

    def post(self, callback):  # type: ignore[no-untyped-def]
        raise AssertionError("not posted in this test")

    def now_ms(self) -> float:
        return 0.0


def test_launch_app_passes_config_to_window_and_cleans_up(tmp_path: Path) -> None:
    config = AppConfig(font_size=14.0, resize_debounce_ms=120, history_dir=str(tmp_path / "history"))
    registry = _Registry()
    seen: dict[str, object] = {}

    def fake_runner(**kwargs: object) -> int:
        seen.update(kwargs)
        return 7

    options = SpawnOptions(command="limactl", args=("shell", "default"))
    result = app_module.launch_app(options, config=config, registry=registry, window_runner=fake_runner)  # type: ignore[arg-type]

    assert result == 7
    assert seen["options"] == options
    assert seen["font_size"] == 14.0
    assert seen["title"] == "limactl shell default"
    assert seen["close_session_on_exit"] is False
    assert seen["initial_output"] == b""
    assert registry.calls == [("save", str(tmp_path / "history")), ("close_all", None)]

    service = seen["service_factory"](_Scheduler())  # type: ignore[operator]
    assert service.registry is registry
    assert service.debounce_ms == 120


def test_launch_app_closes_sessions_even_when_window_fails(tmp_path: Path) -> None:
    registry = _Registry()

    def failing_runner(**_kwargs: object) -> int:
        raise RuntimeError("display unavailable")

    with pytest.raises(RuntimeError):
        app_module.launch_app(
            SpawnOptions(command="sh"),
            config=AppConfig(history_dir=str(tmp_path)),
            registry=registry,  # type: ignore[arg-type]
            window_runner=failing_runner,
        )

    assert [name for name, _ in registry.calls] == ["save", "close_all"]


def test_launch_app_persists_real_session_history(tmp_path: Path) -> None:
    class _Pty:
        pid = 10
        exitstatus = None
        signalstatus = None

        def __init__(self) -> None:
            self.alive = True
            self.pending = [b"saved output"]

        def read(self, _size: int = 4096) -> bytes:
            if not self.alive:
                raise EOFError
            if self.pending:
                return self.pending.pop()
            time.sleep(0.01)
            return b""

        def isalive(self) -> bool:
            return self.alive

        def terminate(self, force: bool = False) -> bool:
            self.alive = False
            self.signalstatus = 15
            return True

        def close(self, force: bool = True) -> None:
            return None

    history_dir = tmp_path / "history"
    config = AppConfig(history_dir=str(history_dir))
    registry = app_module.build_registry(config, spawn=lambda *_args: _Pty(), id_factory=lambda: "s1")

    def runner(**_kwargs: object) -> int:
        session_id = registry.spawn("sh")
        deadline = time.monotonic() + 2.0
        while registry.history(session_id) != b"saved output" and time.monotonic() < deadline:
            time.sleep(0.01)
        return 0

    app_module.launch_app(SpawnOptions(command="sh"), config=config, registry=registry, window_runner=runner)

    assert load_session_history(history_dir, "s1") == b"saved output"
    assert registry.list_sessions() == []


def test_build_registry_applies_config_limits() -> None:
    registry = app_module.build_registry(AppConfig(max_sessions=3, close_grace_seconds=0.5))

    assert registry.max_sessions == 3
    assert registry.close_grace_seconds == 0.5


def test_launch_app_shows_restored_output_and_consumes_its_history(tmp_path: Path) -> None:
    history_dir = tmp_path / "history"
    persistence.save_session_history(history_dir, "old", b"$ make\r\nok\r\n")
    persistence.save_session_metadata(history_dir, "old", cwd="/srv/app")
    restored = persistence.load_saved_session(history_dir, "old")
    seen: dict[str, object] = {}

    def runner(**kwargs: object) -> int:
        seen.update(kwargs)
        return 0

    app_module.launch_app(
        SpawnOptions(command="sh"),
        config=AppConfig(history_dir=str(history_dir)),
        registry=_Registry(),  # type: ignore[arg-type]
        window_runner=runner,
        restored=restored,
    )

    assert seen["initial_output"] == b"$ make\r\nok\r\n"
    assert persistence.list_saved_sessions(history_dir) == []
    assert restored == SavedSession(session_id="old", history=b"$ make\r\nok\r\n", cwd="/srv/app")
