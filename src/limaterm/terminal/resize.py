"""Debounced container-resize coordination for one terminal view.

States per view: IDLE -> OBSERVING -> SETTLING -> APPLYING -> IDLE. Raw size
notifications overwrite the pending target and restart the debounce timer;
only an uninterrupted debounce reaches APPLYING, and only a real cell-count
change touches the grid or the backend. After each apply a short pulse keeps
re-reading the container to follow layout animations that finish after the
last notification.
"""

from __future__ import annotations

import logging as py_logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from limaterm.errors import LimaTermError, SessionNotFound
from limaterm.terminal.geometry import GeometryFitter
from limaterm.terminal.models import Geometry, TerminalGrid

logger = py_logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 200
DEFAULT_PULSE_INTERVAL_MS = 16
DEFAULT_PULSE_STABLE_CHECKS = 3
DEFAULT_PULSE_MAX_MS = 200

ResizeSession = Callable[[str, int, int], object]
SizeReader = Callable[[], "tuple[float, float] | None"]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...

    def post(self, callback: Callable[[], None]) -> None:
        """Run callback on the scheduler's thread; safe to call from any thread."""

    def now_ms(self) -> float: ...


class MonotonicClock:
    """now_ms() mixin for schedulers backed by a real event loop."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0


class ResizeState(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    SETTLING = "settling"
    APPLYING = "applying"


@dataclass(frozen=True)
class PendingResize:
    session_id: str | None
    width_px: float
    height_px: float
    cols: int | None
    rows: int | None
    deadline_ms: float


class ResizeCoordinator:
    def __init__(
        self,
        fitter: GeometryFitter,
        grid: TerminalGrid,
        *,
        scheduler: Scheduler,
        resize_session: ResizeSession,
        session_id: str | None = None,
        read_size: SizeReader | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        pulse_interval_ms: int = DEFAULT_PULSE_INTERVAL_MS,
        pulse_stable_checks: int = DEFAULT_PULSE_STABLE_CHECKS,
        pulse_max_ms: int = DEFAULT_PULSE_MAX_MS,
    ) -> None:
        self.fitter = fitter
        self.grid = grid
        self.session_id = session_id
        self.debounce_ms = debounce_ms
        self.pulse_interval_ms = pulse_interval_ms
        self.pulse_stable_checks = pulse_stable_checks
        self.pulse_max_ms = pulse_max_ms
        self._scheduler = scheduler
        self._resize_session = resize_session
        self._read_size = read_size
        self._state = ResizeState.IDLE
        self._pending: PendingResize | None = None
        self._debounce: TimerHandle | None = None
        self._pulse: TimerHandle | None = None
        self._pulse_started_ms = 0.0
        self._pulse_stable = 0
        self._applied: Geometry | None = None
        self._in_flight = False
        self._rerun = False
        self._disposed = False
        self.backend_calls = 0

    @property
    def state(self) -> ResizeState:
        return self._state

    @property
    def pending(self) -> PendingResize | None:
        return self._pending

    @property
    def applied(self) -> Geometry | None:
        return self._applied

    @property
    def pulsing(self) -> bool:
        return self._pulse is not None

    def bind_session(self, session_id: str | None) -> None:
        self.session_id = session_id
        if self._pending is not None:
            self._pending = PendingResize(
                session_id=session_id,
                width_px=self._pending.width_px,
                height_px=self._pending.height_px,
                cols=self._pending.cols,
                rows=self._pending.rows,
                deadline_ms=self._pending.deadline_ms,
            )

    def initial_fit(self, width_px: float, height_px: float) -> Geometry | None:
        """Size the local grid on mount. The backend learns this size at spawn/connect."""
        geometry = self._fit(width_px, height_px)
        if geometry is None:
            return None
        if self.grid.cols != geometry.cols or self.grid.rows != geometry.rows:
            self.grid.resize(geometry.cols, geometry.rows)
        self._applied = geometry
        return geometry

    def observe(self, width_px: float, height_px: float) -> None:
        """Record a raw container size notification."""
        if self._disposed:
            return
        self._stop_pulse()
        self._state = ResizeState.OBSERVING
        target = self._fit(width_px, height_px)
        self._pending = PendingResize(
            session_id=self.session_id,
            width_px=width_px,
            height_px=height_px,
            cols=target.cols if target else None,
            rows=target.rows if target else None,
            deadline_ms=self._scheduler.now_ms() + self.debounce_ms,
        )
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = self._scheduler.call_later(self.debounce_ms, self._settle)
        self._state = ResizeState.SETTLING

    def cancel(self) -> None:
        """Discard any pending request and stop timers."""
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        self._stop_pulse()
        self._pending = None
        self._state = ResizeState.IDLE

    def dispose(self) -> None:
        self.cancel()
        self._disposed = True

    def _settle(self) -> None:
        self._debounce = None
        pending = self._pending
        self._pending = None
        if pending is None or self._disposed:
            self._state = ResizeState.IDLE
            return
        if self._in_flight:
            self._pending = pending
            self._rerun = True
            return
        self._state = ResizeState.APPLYING
        try:
            self._apply(pending.width_px, pending.height_px)
        finally:
            self._state = ResizeState.IDLE
        self._start_pulse()

    def _apply(self, width_px: float, height_px: float) -> bool:
        geometry = self._fit(width_px, height_px)
        if geometry is None:
            return False
        if self._applied is not None and self._applied.grid == geometry.grid:
            self._applied = geometry
            return False

        self._in_flight = True
        try:
            self.grid.resize(geometry.cols, geometry.rows)
            self._applied = geometry
            logger.debug("resize-apply session=%s grid=%sx%s", self.session_id, geometry.cols, geometry.rows)
            session_id = self.session_id
            if session_id is not None:
                self.backend_calls += 1
                try:
                    self._resize_session(session_id, geometry.cols, geometry.rows)
                except SessionNotFound:
                    logger.info("resize-apply session=%s ended; skipping backend resize", session_id)
                except LimaTermError as exc:
                    logger.error("resize-apply session=%s backend resize failed: %s", session_id, exc)
        finally:
            self._in_flight = False

        if self._rerun:
            self._rerun = False
            self._debounce = self._scheduler.call_later(0, self._settle)
        return True

    def _fit(self, width_px: float, height_px: float) -> Geometry | None:
        try:
            geometry = self.fitter.fit(width_px, height_px)
        except Exception:
            logger.exception("resize-fit failed size=%sx%s", width_px, height_px)
            return None
        if geometry is None:
            return None
        if not geometry.is_valid(
            minimum_cols=self.fitter.minimum_cols,
            minimum_rows=self.fitter.minimum_rows,
        ):
            logger.debug("resize-fit discarded invalid geometry %s", geometry)
            return None
        return geometry

    def _start_pulse(self) -> None:
        if self._read_size is None or self.pulse_max_ms <= 0 or self._disposed:
            return
        self._stop_pulse()
        self._pulse_started_ms = self._scheduler.now_ms()
        self._pulse_stable = 0
        self._pulse = self._scheduler.call_later(self.pulse_interval_ms, self._pulse_tick)

    def _stop_pulse(self) -> None:
        if self._pulse is not None:
            self._pulse.cancel()
            self._pulse = None

    def _pulse_tick(self) -> None:
        self._pulse = None
        if self._disposed or self._read_size is None:
            return
        try:
            size = self._read_size()
        except Exception:
            logger.debug("resize-pulse size read failed", exc_info=True)
            size = None

        changed = False
        if size is not None:
            changed = self._apply(size[0], size[1])
        self._pulse_stable = 0 if changed else self._pulse_stable + 1

        elapsed = self._scheduler.now_ms() - self._pulse_started_ms
        if self._pulse_stable >= self.pulse_stable_checks or elapsed >= self.pulse_max_ms:
            logger.debug(
                "resize-pulse session=%s stopped stable=%s elapsed=%.0fms",
                self.session_id,
                self._pulse_stable,
                elapsed,
            )
            return
        self._pulse = self._scheduler.call_later(self.pulse_interval_ms, self._pulse_tick)
