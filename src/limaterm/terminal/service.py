"""View-facing session lifecycle: mount, connect-or-spawn, resize, input, unmount."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from limaterm.errors import LimaTermError, SessionNotFound
from limaterm.terminal.channel import Subscription
from limaterm.terminal.geometry import CellMetrics, GeometryFitter, Padding
from limaterm.terminal.input_bridge import InputBridge
from limaterm.terminal.models import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    Geometry,
    SessionExit,
    SpawnOptions,
    TerminalContainer,
    TerminalGrid,
    ViewState,
)
from limaterm.terminal.registry import SessionRegistry
from limaterm.terminal.resize import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_PULSE_INTERVAL_MS,
    DEFAULT_PULSE_MAX_MS,
    DEFAULT_PULSE_STABLE_CHECKS,
    ResizeCoordinator,
    Scheduler,
)

logger = py_logging.getLogger(__name__)

StateListener = Callable[[ViewState], None]
CwdChangeListener = Callable[[str], None]


@dataclass(frozen=True)
class SessionEvent:
    session_id: str
    step: str
    message: str


class SessionBinding:
    """Live pairing of one terminal view with one session.

    Once ``is_ready`` is true, input reaches the process and output is flowing
    into the view's grid.
    """

    def __init__(
        self,
        service: TerminalService,
        grid: TerminalGrid,
        container: TerminalContainer,
        coordinator: ResizeCoordinator,
        bridge: InputBridge,
        *,
        on_state_change: StateListener | None = None,
        on_cwd_change: CwdChangeListener | None = None,
    ) -> None:
        self._service = service
        self.grid = grid
        self.container = container
        self.coordinator = coordinator
        self.bridge = bridge
        self._on_state_change = on_state_change
        self._on_cwd_change = on_cwd_change
        self._lock = threading.RLock()
        self._state = ViewState.IDLE
        self._session_id: str | None = None
        self._subscription: Subscription | None = None
        self._remove_exit_listener: Callable[[], None] | None = None
        self._remove_cwd_listener: Callable[[], None] | None = None
        self.last_error: LimaTermError | None = None
        self.exit_code: int | None = None
        self.initial_geometry: Geometry | None = None
        self.cwd: str | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ViewState.READY

    def on_container_resized(self, width_px: float, height_px: float) -> None:
        if self._state in (ViewState.DETACHED, ViewState.ENDED):
            return
        self.coordinator.observe(width_px, height_px)

    def update_device_pixel_ratio(self, dpr: float) -> None:
        self.coordinator.fitter.update_metrics(dpr=dpr)
        width, height = self.container.pixel_size()
        self.on_container_resized(width, height)

    def send_input(self, data: bytes | str) -> bool:
        return self.bridge.forward(data)

    def focus_changed(self, focused: bool) -> bool:
        return self.bridge.focus(focused)

    def unmount(self) -> None:
        """Tear the view down; the session keeps running for a later re-attach."""
        with self._lock:
            if self._state == ViewState.DETACHED:
                return
            self._teardown()
            session_id = self._session_id
            if session_id is not None and self._subscription is not None:
                self._service.registry.detach(session_id, self._subscription)
            self._subscription = None
            self._set_state(ViewState.DETACHED)
        if session_id is not None:
            self._service.record_event(session_id, "unmount", "View detached; session kept alive.")

    def close(self) -> None:
        session_id = self._session_id
        self.unmount()
        if session_id is not None:
            self._service.registry.close(session_id)
            self._service.record_event(session_id, "close", "Session closed by view.")

    def _bind(self, session_id: str, subscription: Subscription) -> None:
        with self._lock:
            self._session_id = session_id
            self._subscription = subscription
            self.coordinator.bind_session(session_id)
            self.bridge.bind(session_id)

    def _listen(self, registry: SessionRegistry) -> None:
        # Registry callbacks arrive on the PTY reader thread; hand them to the view's thread.
        post = self._service.scheduler.post

        def on_exit(event: SessionExit) -> None:
            post(lambda: self._handle_exit(event))

        def on_cwd(session_id: str, cwd: str) -> None:
            post(lambda: self._handle_cwd(session_id, cwd))

        self._remove_exit_listener = registry.add_exit_listener(on_exit)
        self._remove_cwd_listener = registry.add_cwd_listener(on_cwd)

    def _handle_cwd(self, session_id: str, cwd: str) -> None:
        if session_id != self._session_id or self._state != ViewState.READY:
            return
        self.cwd = cwd
        if self._on_cwd_change is not None:
            try:
                self._on_cwd_change(cwd)
            except Exception:
                logger.exception("view-event session=%s cwd listener failed", session_id)

    def _handle_exit(self, event: SessionExit) -> None:
        if event.session_id != self._session_id:
            return
        with self._lock:
            if self._state not in (ViewState.READY, ViewState.CONNECTING):
                return
            self.exit_code = event.exit_code
            self._teardown()
            self._subscription = None
            self._set_state(ViewState.ENDED)
        self._service.record_event(
            event.session_id,
            "ended",
            f"Session ended ({event.reason}, code={event.exit_code}).",
        )

    def _fail(self, error: LimaTermError) -> None:
        with self._lock:
            self.last_error = error
            self._teardown()
            self._set_state(ViewState.FAILED)

    def _teardown(self) -> None:
        self.bridge.dispose()
        self.coordinator.dispose()
        if self._remove_exit_listener is not None:
            self._remove_exit_listener()
            self._remove_exit_listener = None
        if self._remove_cwd_listener is not None:
            self._remove_cwd_listener()
            self._remove_cwd_listener = None

    def _set_state(self, state: ViewState) -> None:
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("view-event session=%s state listener failed", self._session_id)


class TerminalService:
    def __init__(
        self,
        registry: SessionRegistry,
        *,
        scheduler: Scheduler,
        cell: CellMetrics | None = None,
        padding: Padding = Padding(),
        scrollbar_width: float = 10.0,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        pulse_interval_ms: int = DEFAULT_PULSE_INTERVAL_MS,
        pulse_stable_checks: int = DEFAULT_PULSE_STABLE_CHECKS,
        pulse_max_ms: int = DEFAULT_PULSE_MAX_MS,
        replay_history: bool = False,
        default_cols: int = DEFAULT_COLS,
        default_rows: int = DEFAULT_ROWS,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.cell = cell or CellMetrics.estimate(12, line_height=1.15)
        self.padding = padding
        self.scrollbar_width = scrollbar_width
        self.debounce_ms = debounce_ms
        self.pulse_interval_ms = pulse_interval_ms
        self.pulse_stable_checks = pulse_stable_checks
        self.pulse_max_ms = pulse_max_ms
        self.replay_history = replay_history
        self.default_cols = default_cols
        self.default_rows = default_rows
        self._events: list[SessionEvent] = []
        self._events_lock = threading.Lock()

    def list_events(self) -> list[SessionEvent]:
        with self._events_lock:
            return list(self._events)

    def clear_events(self) -> None:
        with self._events_lock:
            self._events.clear()
        logger.info("view-event session=* step=clear-events message=Session events cleared.")

    def record_event(self, session_id: str, step: str, message: str) -> None:
        event = SessionEvent(session_id=session_id, step=step, message=message)
        with self._events_lock:
            self._events.append(event)
        logger.info("view-event session=%s step=%s message=%s", session_id, step, message)

    def use_session(
        self,
        container: TerminalContainer,
        grid: TerminalGrid,
        options: SpawnOptions,
        *,
        session_id: str | None = None,
        cell: CellMetrics | None = None,
        on_state_change: StateListener | None = None,
        on_cwd_change: CwdChangeListener | None = None,
        initial_output: bytes = b"",
    ) -> SessionBinding:
        """Bind a view to a session, reconnecting when possible and spawning otherwise.

        Failures do not raise: the returned binding reports them through
        ``state`` and ``last_error`` so the view can render them inline.
        ``initial_output`` (a restored scrollback) is written to the grid
        before any live output. Exit and cwd notifications are delivered
        through ``scheduler.post``.
        """
        fitter = GeometryFitter(
            cell or self.cell,
            dpr=container.device_pixel_ratio(),
            padding=self.padding,
            scrollbar_width=self.scrollbar_width,
            minimum_cols=self.registry.minimum_cols,
            minimum_rows=self.registry.minimum_rows,
        )
        coordinator = ResizeCoordinator(
            fitter,
            grid,
            scheduler=self.scheduler,
            resize_session=self.registry.resize,
            read_size=container.pixel_size,
            debounce_ms=self.debounce_ms,
            pulse_interval_ms=self.pulse_interval_ms,
            pulse_stable_checks=self.pulse_stable_checks,
            pulse_max_ms=self.pulse_max_ms,
        )
        bridge = InputBridge(self.registry.write)
        binding = SessionBinding(
            self,
            grid,
            container,
            coordinator,
            bridge,
            on_state_change=on_state_change,
            on_cwd_change=on_cwd_change,
        )
        binding._set_state(ViewState.CONNECTING)
        binding._listen(self.registry)

        width, height = container.pixel_size()
        initial = coordinator.initial_fit(width, height)
        binding.initial_geometry = initial
        cols, rows = initial.grid if initial is not None else (self.default_cols, self.default_rows)
        if initial_output:
            grid.write(initial_output)
            logger.debug("view-event session=- step=restore message=%s saved bytes.", len(initial_output))

        try:
            resolved_id = self._connect(binding, session_id, cols, rows, initial is not None)
            if resolved_id is None:
                resolved_id = self.registry.spawn(
                    options.command,
                    options.args,
                    options.cwd,
                    cols,
                    rows,
                    env=options.env,
                )
                self.record_event(resolved_id, "spawn", f"Spawned {' '.join(options.argv)} at {cols}x{rows}.")
            subscription = self.registry.attach(resolved_id, grid.write, replay_history=self.replay_history)
        except SessionNotFound as exc:
            # Closed or evicted between spawn and attach.
            binding.last_error = exc
            binding._teardown()
            binding._set_state(ViewState.ENDED)
            self.record_event(exc.session_id or "-", "ended", "Session ended before the view attached.")
            return binding
        except LimaTermError as exc:
            binding._fail(exc)
            self.record_event(session_id or "-", "failed", exc.message)
            return binding

        binding._bind(resolved_id, subscription)
        if not self.registry.exists(resolved_id):
            event = self.registry.exit_info(resolved_id)
            binding._handle_exit(event or SessionExit(session_id=resolved_id, exit_code=None, reason="exit"))
            return binding
        binding._set_state(ViewState.READY)
        self.record_event(resolved_id, "ready", "Input live and output flowing.")
        return binding

    def _connect(
        self,
        binding: SessionBinding,
        session_id: str | None,
        cols: int,
        rows: int,
        fitted: bool,
    ) -> str | None:
        if session_id is None:
            return None
        if not self.registry.exists(session_id):
            if self.registry.undelivered_bytes(session_id) > 0:
                self.record_event(session_id, "connect-drain", "Process already exited; showing its last output.")
                return session_id
            self.record_event(session_id, "connect-fallback", "Session is gone; spawning a new one.")
            return None
        if fitted:
            try:
                self.registry.resize(session_id, cols, rows)
            except SessionNotFound:
                self.record_event(session_id, "connect-fallback", "Session ended while connecting; spawning.")
                return None
        self.record_event(session_id, "connect", f"Reattached at {cols}x{rows}.")
        return session_id
