from __future__ import annotations

from collections.abc import Callable

from hypothesis import given
from hypothesis import strategies as st

from limaterm.terminal.geometry import CellMetrics, GeometryFitter, Padding, compute_geometry
from limaterm.terminal.pty_backend import PtyProcessBackend
from limaterm.terminal.resize import ResizeCoordinator

_SIZES = st.floats(min_value=-500, max_value=4000, allow_nan=False, allow_infinity=False)
_RATIOS = st.sampled_from([1.0, 1.25, 1.5, 1.75, 2.0, 2.5, 3.0])
_CELLS = st.builds(
    CellMetrics,
    char_width=st.floats(min_value=4, max_value=20),
    char_height=st.integers(min_value=8, max_value=40),
    line_height=st.sampled_from([1.0, 1.1, 1.15, 1.2, 1.5]),
)
_PADDING = Padding(left=4, right=4, top=2, bottom=2)


@given(width=_SIZES, height=_SIZES, dpr=_RATIOS, cell=_CELLS)
def test_fitter_never_returns_degenerate_geometry(
    width: float,
    height: float,
    dpr: float,
    cell: CellMetrics,
) -> None:
    fitter = GeometryFitter(cell, dpr=dpr, padding=_PADDING, scrollbar_width=10)

    geometry = fitter.fit(width, height)

    available_width = width - _PADDING.horizontal - 10
    available_height = height - _PADDING.vertical
    if available_width <= 0 or available_height <= 0:
        assert geometry is None
    else:
        assert geometry is not None
        assert geometry.cols >= 2
        assert geometry.rows >= 1


@given(
    width=st.floats(min_value=200, max_value=4000),
    height=st.floats(min_value=200, max_value=4000),
    dpr=_RATIOS,
    cell=_CELLS,
)
def test_fitted_grid_fills_but_never_overflows_available_space(
    width: float,
    height: float,
    dpr: float,
    cell: CellMetrics,
) -> None:
    geometry = compute_geometry(width, height, cell=cell, dpr=dpr, padding=_PADDING, scrollbar_width=10)
    available_width = width - _PADDING.horizontal - 10
    available_height = height - _PADDING.vertical
    tolerance = 1e-3

    if geometry.cols > 2:
        assert geometry.cols * geometry.cell_width_px <= available_width + tolerance
    assert (geometry.cols + 1) * geometry.cell_width_px > available_width - tolerance
    if geometry.rows > 1:
        assert geometry.rows * geometry.cell_height_px <= available_height + tolerance
    assert (geometry.rows + 1) * geometry.cell_height_px > available_height - tolerance


@given(
    widths=st.lists(st.floats(min_value=200, max_value=3000), min_size=2, max_size=2),
    dpr=_RATIOS,
    cell=_CELLS,
)
def test_wider_container_never_has_fewer_columns(widths: list[float], dpr: float, cell: CellMetrics) -> None:
    narrow, wide = sorted(widths)

    narrow_geometry = compute_geometry(narrow, 600, cell=cell, dpr=dpr)
    wide_geometry = compute_geometry(wide, 600, cell=cell, dpr=dpr)

    assert wide_geometry.cols >= narrow_geometry.cols


class _Sink:
    def __init__(self) -> None:
        self.writes: list[bytes] = []

    def write(self, data: bytes) -> int:
        self.writes.append(data)
        return len(data)

    def isalive(self) -> bool:
        return True


@given(st.lists(st.binary(min_size=0, max_size=64), min_size=0, max_size=40))
def test_backend_writes_preserve_call_order(chunks: list[bytes]) -> None:
    process = _Sink()
    backend = PtyProcessBackend("s1", process, on_output=lambda _data: None, on_exit=lambda _code: None)

    for chunk in chunks:
        backend.write(chunk)

    assert b"".join(process.writes) == b"".join(chunks)


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class _Scheduler:
    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[tuple[float, Callable[[], None], _Handle]] = []

    def now_ms(self) -> float:
        return self.now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _Handle:
        handle = _Handle()
        self.timers.append((self.now + delay_ms, callback, handle))
        return handle

    def advance(self, ms: float) -> None:
        self.now += ms
        ready = [timer for timer in self.timers if timer[0] <= self.now and not timer[2].cancelled]
        self.timers = [timer for timer in self.timers if timer not in ready]
        for _due, callback, _handle in ready:
            callback()


class _Grid:
    cols = 80
    rows = 24

    def resize(self, cols: int, rows: int) -> None:
        self.cols, self.rows = cols, rows

    def write(self, data: bytes) -> None:
        return None


@given(
    st.lists(
        st.tuples(st.integers(min_value=100, max_value=2000), st.integers(min_value=100, max_value=1200)),
        min_size=1,
        max_size=30,
    ),
    st.lists(st.integers(min_value=0, max_value=199), min_size=30, max_size=30),
)
def test_notifications_within_one_window_issue_at_most_one_resize(
    sizes: list[tuple[int, int]],
    gaps: list[int],
) -> None:
    scheduler = _Scheduler()
    calls: list[tuple[str, int, int]] = []
    fitter = GeometryFitter(CellMetrics(char_width=8, char_height=16), scrollbar_width=0)
    coordinator = ResizeCoordinator(
        fitter,
        _Grid(),
        scheduler=scheduler,
        resize_session=lambda session_id, cols, rows: calls.append((session_id, cols, rows)),
        session_id="s1",
    )
    coordinator.initial_fit(640, 384)

    for (width, height), gap in zip(sizes, gaps):
        coordinator.observe(width, height)
        scheduler.advance(gap)
    scheduler.advance(200)

    last = fitter.fit(*sizes[-1])
    assert last is not None
    if last.grid == (80, 24):
        assert calls == []
    else:
        assert calls == [("s1", last.cols, last.rows)]
