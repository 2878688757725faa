from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

_SECURITY_TEST_FILES = {
    "test_persistence.py",
    "test_session_commands.py",
}


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        name = path.name

        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)

        if name in _SECURITY_TEST_FILES:
            item.add_marker(pytest.mark.security)


class FakePty:
    """Stands in for a ptyprocess.PtyProcess; emit()/exit() drive the reader thread."""

    def __init__(
        self,
        *,
        pid: int = 1000,
        ignore_terminate: bool = False,
        max_write: int | None = None,
    ) -> None:
        self.output: queue.Queue[bytes | str | None] = queue.Queue()
        self.writes: list[bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self.terminate_calls: list[bool] = []
        self.alive = True
        self.closed = False
        self.pid = pid
        self.exitstatus: int | None = None
        self.signalstatus: int | None = None
        self.ignore_terminate = ignore_terminate
        self.max_write = max_write
        self.fail_writes = False

    def read(self, _size: int = 4096) -> bytes | str:
        try:
            chunk = self.output.get(timeout=0.05)
        except queue.Empty:
            if not self.alive:
                raise EOFError
            return b""
        if chunk is None:
            raise EOFError
        return chunk

    def write(self, data: bytes) -> int:
        if not self.alive or self.fail_writes:
            raise OSError(5, "Input/output error")
        accepted = data if self.max_write is None else data[: self.max_write]
        self.writes.append(accepted)
        return len(accepted)

    def setwinsize(self, rows: int, cols: int) -> None:
        if not self.alive:
            raise OSError(5, "Input/output error")
        self.sizes.append((rows, cols))

    def isalive(self) -> bool:
        return self.alive

    def terminate(self, force: bool = False) -> bool:
        self.terminate_calls.append(force)
        if force or not self.ignore_terminate:
            self.signalstatus = 9 if force else 15
            self.alive = False
            self.output.put(None)
        return not self.alive

    def close(self, force: bool = True) -> None:
        self.closed = True

    def emit(self, data: bytes | str) -> None:
        self.output.put(data)

    def exit(self, code: int = 0) -> None:
        self.exitstatus = code
        self.alive = False
        self.output.put(None)


class FakeSpawner:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str | None, dict[str, str] | None, tuple[int, int]]] = []
        self.processes: list[FakePty] = []

    @property
    def dimensions(self) -> list[tuple[int, int]]:
        return [call[3] for call in self.calls]

    def __call__(self, argv, cwd, env, dimensions) -> FakePty:
        self.calls.append((list(argv), cwd, env, dimensions))
        process = FakePty(pid=1000 + len(self.processes))
        self.processes.append(process)
        return process


class ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False
        self.cancelled_on: str | None = None

    def cancel(self) -> None:
        self.cancelled = True
        self.cancelled_on = threading.current_thread().name


class ManualScheduler:
    """Virtual-time scheduler; posted callbacks run on whichever thread drives it."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._timers: list[tuple[float, int, Callable[[], None], ManualHandle]] = []
        self._posted: list[Callable[[], None]] = []
        self._posted_lock = threading.Lock()
        self.handles: list[ManualHandle] = []

    def now_ms(self) -> float:
        return self.now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle()
        self._seq += 1
        self._timers.append((self.now + delay_ms, self._seq, callback, handle))
        self.handles.append(handle)
        return handle

    def post(self, callback: Callable[[], None]) -> None:
        with self._posted_lock:
            self._posted.append(callback)

    def posted(self) -> int:
        with self._posted_lock:
            return len(self._posted)

    def run_posted(self) -> int:
        with self._posted_lock:
            callbacks, self._posted = self._posted, []
        for callback in callbacks:
            callback()
        return len(callbacks)

    def advance(self, ms: float) -> None:
        self.run_posted()
        target = self.now + ms
        while True:
            due = sorted(
                (timer for timer in self._timers if not timer[3].cancelled and timer[0] <= target),
                key=lambda timer: (timer[0], timer[1]),
            )
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self.now = timer[0]
            timer[2]()
            self.run_posted()
        self.now = target

    def pending(self) -> int:
        return sum(1 for timer in self._timers if not timer[3].cancelled)


def wait_until(
    predicate: Callable[[], bool],
    timeout: float = 2.0,
    *,
    pump: Callable[[], object] | None = None,
) -> bool:
    """Poll ``predicate``; ``pump`` runs first on every round (e.g. ManualScheduler.run_posted)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pump is not None:
            pump()
        if predicate():
            return True
        time.sleep(0.01)
    if pump is not None:
        pump()
    return predicate()


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
