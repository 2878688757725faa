from __future__ import annotations

from collections.abc import Callable

import pytest

from limaterm.errors import BackendCommunicationError, SessionNotFound
from limaterm.terminal.geometry import CellMetrics, GeometryFitter
from limaterm.terminal.resize import ResizeCoordinator, ResizeState

from conftest import ManualScheduler

CELL = CellMetrics(char_width=8, char_height=16)


class _FakeGrid:
    def __init__(self, cols: int = 80, rows: int = 24) -> None:
        self.cols = cols
        self.rows = rows
        self.resizes: list[tuple[int, int]] = []

    def resize(self, cols: int, rows: int) -> None:
        self.cols, self.rows = cols, rows
        self.resizes.append((cols, rows))

    def write(self, data: bytes) -> None:
        return None


class _Backend:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int, int]] = []
        self.error: Exception | None = None

    def __call__(self, session_id: str, cols: int, rows: int) -> bool:
        self.calls.append((session_id, cols, rows))
        if self.error is not None:
            raise self.error
        return True


def _coordinator(
    scheduler: ManualScheduler,
    grid: _FakeGrid,
    backend: _Backend,
    *,
    read_size: Callable[[], tuple[float, float] | None] | None = None,
    session_id: str | None = "s1",
) -> ResizeCoordinator:
    return ResizeCoordinator(
        GeometryFitter(CELL, scrollbar_width=0),
        grid,
        scheduler=scheduler,
        resize_session=backend,
        session_id=session_id,
        read_size=read_size,
    )


def test_initial_fit_sizes_grid_without_backend_call(scheduler: ManualScheduler) -> None:
    grid = _FakeGrid(cols=10, rows=5)
    backend = _Backend()
    coordinator = _coordinator(scheduler, grid, backend)

    geometry = coordinator.initial_fit(640, 384)

    assert geometry is not None and geometry.grid == (80, 24)
    assert grid.resizes == [(80, 24)]
    assert backend.calls == []


def test_resize_from_80x24_to_100x30_settles_with_one_backend_call(scheduler: ManualScheduler) -> None:
    grid = _FakeGrid()
    backend = _Backend()
    coordinator = _coordinator(scheduler, grid, backend)
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    assert coordinator.state == ResizeState.SETTLING
    scheduler.advance(199)
    assert backend.calls == []

    scheduler.advance(1)

    assert (grid.cols, grid.rows) == (100, 30)
    assert backend.calls == [("s1", 100, 30)]
    assert coordinator.state == ResizeState.IDLE


def test_burst_of_notifications_coalesces_to_last_size(scheduler: ManualScheduler) -> None:
    grid = _FakeGrid()
    backend = _Backend()
    coordinator = _coordinator(scheduler, grid, backend)
    coordinator.initial_fit(640, 384)

    for width in range(650, 960, 10):
        coordinator.observe(width, 400)
        scheduler.advance(20)
    scheduler.advance(200)

    assert backend.calls == [("s1", 950 // 8, 400 // 16)]
    assert grid.resizes == [(950 // 8, 25)]


def test_each_notification_restarts_the_debounce(scheduler: ManualScheduler) -> None:
    backend = _Backend()
    coordinator = _coordinator(scheduler, _FakeGrid(), backend)
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    scheduler.advance(150)
    coordinator.observe(808, 480)
    scheduler.advance(150)
    assert backend.calls == []
    assert coordinator.pending is not None and coordinator.pending.cols == 101

    scheduler.advance(50)
    assert backend.calls == [("s1", 101, 30)]


def test_unchanged_geometry_is_a_noop(scheduler: ManualScheduler) -> None:
    grid = _FakeGrid()
    backend = _Backend()
    coordinator = _coordinator(scheduler, grid, backend)
    coordinator.initial_fit(640, 384)

    coordinator.observe(645, 390)
    scheduler.advance(200)

    assert backend.calls == []
    assert grid.resizes == []


@pytest.mark.parametrize("size", [(0, 0), (640, 0), (float("nan"), 300)])
def test_unavailable_geometry_is_skipped(scheduler: ManualScheduler, size: tuple[float, float]) -> None:
    grid = _FakeGrid()
    backend = _Backend()
    coordinator = _coordinator(scheduler, grid, backend)
    coordinator.initial_fit(640, 384)

    coordinator.observe(*size)
    scheduler.advance(200)

    assert backend.calls == []
    assert (grid.cols, grid.rows) == (80, 24)
    assert coordinator.state == ResizeState.IDLE


def test_hidden_then_visible_recovers_on_next_observation(scheduler: ManualScheduler) -> None:
    backend = _Backend()
    coordinator = _coordinator(scheduler, _FakeGrid(), backend)
    coordinator.initial_fit(640, 384)

    coordinator.observe(0, 0)
    scheduler.advance(200)
    coordinator.observe(800, 480)
    scheduler.advance(200)

    assert backend.calls == [("s1", 100, 30)]


def test_unbound_session_resizes_grid_only(scheduler: ManualScheduler) -> None:
    grid = _FakeGrid()
    backend = _Backend()
    coordinator = _coordinator(scheduler, grid, backend, session_id=None)
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    scheduler.advance(200)
    coordinator.bind_session("s9")
    coordinator.observe(880, 480)
    scheduler.advance(200)

    assert grid.resizes == [(100, 30), (110, 30)]
    assert backend.calls == [("s9", 110, 30)]


@pytest.mark.parametrize(
    "error",
    [
        SessionNotFound("Session not found: s1", session_id="s1"),
        BackendCommunicationError("Failed to resize session s1.", session_id="s1"),
    ],
)
def test_backend_failures_are_logged_not_raised(scheduler: ManualScheduler, error: Exception) -> None:
    grid = _FakeGrid()
    backend = _Backend()
    backend.error = error
    coordinator = _coordinator(scheduler, grid, backend)
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    scheduler.advance(200)

    assert backend.calls == [("s1", 100, 30)]
    assert (grid.cols, grid.rows) == (100, 30)


def test_pulse_follows_late_layout_changes_then_stops(scheduler: ManualScheduler) -> None:
    container = {"size": (800.0, 480.0)}
    grid = _FakeGrid()
    backend = _Backend()
    coordinator = _coordinator(scheduler, grid, backend, read_size=lambda: container["size"])
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    scheduler.advance(200)
    assert coordinator.pulsing is True

    container["size"] = (880.0, 480.0)
    scheduler.advance(16)
    assert backend.calls == [("s1", 100, 30), ("s1", 110, 30)]

    scheduler.advance(16 * 3)
    assert coordinator.pulsing is False
    assert scheduler.pending() == 0


def test_pulse_stops_at_max_duration_even_if_unstable(scheduler: ManualScheduler) -> None:
    widths = iter(range(808, 5000, 8))
    backend = _Backend()
    coordinator = _coordinator(
        scheduler,
        _FakeGrid(),
        backend,
        read_size=lambda: (float(next(widths)), 480.0),
    )
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    scheduler.advance(200)
    scheduler.advance(1000)

    assert coordinator.pulsing is False
    # one debounce apply plus one apply per pulse tick within 200 ms
    assert len(backend.calls) == 1 + 200 // 16 + 1


def test_observation_during_pulse_stops_pulse_and_debounces_again(scheduler: ManualScheduler) -> None:
    backend = _Backend()
    coordinator = _coordinator(scheduler, _FakeGrid(), backend, read_size=lambda: (800.0, 480.0))
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    scheduler.advance(200)
    coordinator.observe(960, 480)

    assert coordinator.pulsing is False
    assert coordinator.state == ResizeState.SETTLING


def test_dispose_discards_pending_request(scheduler: ManualScheduler) -> None:
    backend = _Backend()
    coordinator = _coordinator(scheduler, _FakeGrid(), backend)
    coordinator.initial_fit(640, 384)

    coordinator.observe(800, 480)
    coordinator.dispose()
    scheduler.advance(500)
    coordinator.observe(960, 480)
    scheduler.advance(500)

    assert backend.calls == []
    assert coordinator.pending is None
