"""Qt terminal view bound to a PTY session."""

from __future__ import annotations

import sys
from collections.abc import Callable
from contextlib import suppress

from limaterm.errors import ExitCode, LimaTermError, user_facing_error
from limaterm.terminal.geometry import CellMetrics
from limaterm.terminal.models import SpawnOptions, ViewState
from limaterm.terminal.resize import MonotonicClock, Scheduler
from limaterm.terminal.service import TerminalService
from limaterm.ui.keys import encode_key, encode_paste
from limaterm.ui.screen import ScreenGrid

ServiceFactory = Callable[[Scheduler], TerminalService]

_QT_KEY_NAMES = (
    "Backspace",
    "Return",
    "Enter",
    "Tab",
    "Backtab",
    "Escape",
    "Home",
    "End",
    "PageUp",
    "PageDown",
    "Insert",
    "Delete",
    "Up",
    "Down",
    "Left",
    "Right",
    "Space",
    *(f"F{index}" for index in range(1, 13)),
)


def view_status_text(state: ViewState, *, error: LimaTermError | None = None, exit_code: int | None = None) -> str:
    """Inline banner shown in place of the terminal for non-live states."""
    if state == ViewState.CONNECTING:
        return "Connecting..."
    if state == ViewState.FAILED:
        if error is None:
            return user_facing_error("Terminal failed to start")
        return user_facing_error(error.message, hint=error.hint)
    if state == ViewState.ENDED:
        if exit_code is None:
            return "Session ended."
        return f"Session ended (exit code {exit_code})."
    return ""


def window_title(base: str, program_title: str = "", cwd: str | None = None) -> str:
    if program_title:
        return program_title
    if cwd:
        return f"{base}: {cwd}"
    return base


def run_terminal_window(
    service_factory: ServiceFactory,
    options: SpawnOptions,
    *,
    font_family: str,
    font_size: float,
    line_height: float = 1.0,
    letter_spacing: float = 0.0,
    title: str = "limaterm",
    session_id: str | None = None,
    close_session_on_exit: bool = True,
    initial_output: bytes = b"",
) -> int:
    try:
        from PySide6.QtCore import QObject, Qt, QTimer, Signal, Slot
        from PySide6.QtGui import QColor, QFont, QFontMetricsF, QGuiApplication, QPainter
        from PySide6.QtWidgets import QApplication, QMainWindow, QWidget
    except ImportError as exc:
        raise LimaTermError(
            "PySide6 is not installed; the terminal window cannot open.",
            code=ExitCode.RUNTIME_ERROR,
            hint="Run `pip install PySide6` and try again.",
        ) from exc

    class _TimerHandle:  # pragma: no cover
        def __init__(self, timer: QTimer) -> None:
            self._timer = timer

        def cancel(self) -> None:
            with suppress(RuntimeError):
                self._timer.stop()
                self._timer.deleteLater()

    class _Poster(QObject):  # pragma: no cover
        posted = Signal(object)

        def __init__(self, parent: QObject) -> None:
            super().__init__(parent)
            self.posted.connect(self._run, Qt.ConnectionType.QueuedConnection)

        @Slot(object)
        def _run(self, callback: Callable[[], None]) -> None:
            callback()

    class QtScheduler(MonotonicClock):  # pragma: no cover
        def __init__(self, parent: QObject) -> None:
            self._parent = parent
            self._poster = _Poster(parent)

        def post(self, callback: Callable[[], None]) -> None:
            self._poster.posted.emit(callback)

        def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _TimerHandle:
            timer = QTimer(self._parent)
            timer.setSingleShot(True)

            def fire() -> None:
                timer.deleteLater()
                callback()

            timer.timeout.connect(fire)
            timer.start(max(0, int(delay_ms)))
            return _TimerHandle(timer)

    class _QueuedGrid:  # pragma: no cover
        """Hands reader-thread output to the GUI thread through a queued signal."""

        def __init__(self, screen: ScreenGrid, emit: Callable[[bytes], None]) -> None:
            self._screen = screen
            self._emit = emit

        @property
        def cols(self) -> int:
            return self._screen.cols

        @property
        def rows(self) -> int:
            return self._screen.rows

        def resize(self, cols: int, rows: int) -> None:
            self._screen.resize(cols, rows)

        def write(self, data: bytes) -> None:
            self._emit(data)

    class _WidgetContainer:  # pragma: no cover
        def __init__(self, widget: QWidget) -> None:
            self._widget = widget

        def pixel_size(self) -> tuple[float, float]:
            return (float(self._widget.width()), float(self._widget.height()))

        def device_pixel_ratio(self) -> float:
            return float(self._widget.devicePixelRatioF())

    key_names = {getattr(Qt.Key, f"Key_{name}"): name for name in _QT_KEY_NAMES}

    class TerminalView(QWidget):  # pragma: no cover
        output_received = Signal(bytes)
        state_changed = Signal(str)

        def __init__(self, service: TerminalService) -> None:
            super().__init__()
            self._service = service
            self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
            self.setAttribute(Qt.WidgetAttribute.WA_OpaquePaintEvent)
            self._font = QFont(font_family.split(",")[0].strip(" '\""))
            self._font.setStyleHint(QFont.StyleHint.Monospace)
            self._font.setPointSizeF(font_size)
            metrics = QFontMetricsF(self._font)
            self.cell = CellMetrics(
                char_width=metrics.horizontalAdvance("M"),
                char_height=metrics.height(),
                line_height=line_height,
                letter_spacing=letter_spacing,
            )
            self.screen = ScreenGrid(on_reply=self._send_reply)
            self.output_received.connect(self._on_output, Qt.ConnectionType.QueuedConnection)
            self.state_changed.connect(self._on_state, Qt.ConnectionType.QueuedConnection)
            self.binding = None
            self._cwd: str | None = None

        def mount(self, spawn_options: SpawnOptions, existing_session: str | None, saved_output: bytes = b"") -> None:
            self.binding = self._service.use_session(
                _WidgetContainer(self),
                _QueuedGrid(self.screen, self.output_received.emit),
                spawn_options,
                session_id=existing_session,
                cell=self.cell,
                on_state_change=lambda state: self.state_changed.emit(state.value),
                on_cwd_change=self._on_cwd,
                initial_output=saved_output,
            )
            self.update()

        def _send_reply(self, data: bytes) -> None:
            if self.binding is not None:
                self.binding.send_input(data)

        @Slot(bytes)
        def _on_output(self, data: bytes) -> None:
            self.screen.write(data)
            self._refresh_title()
            self.update()

        def _on_cwd(self, cwd: str) -> None:
            self._cwd = cwd
            self._refresh_title()

        def _refresh_title(self) -> None:
            self.window().setWindowTitle(window_title(title, self.screen.title(), self._cwd))

        @Slot(str)
        def _on_state(self, _state: str) -> None:
            self.update()

        def resizeEvent(self, event) -> None:  # type: ignore[override]
            if self.binding is not None:
                self.binding.on_container_resized(float(self.width()), float(self.height()))
            super().resizeEvent(event)

        def changeEvent(self, event) -> None:  # type: ignore[override]
            if self.binding is not None and event.type() == event.Type.DevicePixelRatioChange:
                self.binding.update_device_pixel_ratio(float(self.devicePixelRatioF()))
            super().changeEvent(event)

        def focusInEvent(self, event) -> None:  # type: ignore[override]
            self._report_focus(True)
            super().focusInEvent(event)

        def focusOutEvent(self, event) -> None:  # type: ignore[override]
            self._report_focus(False)
            super().focusOutEvent(event)

        def _report_focus(self, focused: bool) -> None:
            if self.binding is None:
                return
            self.binding.bridge.focus_reporting = self.screen.focus_reporting
            self.binding.focus_changed(focused)

        def keyPressEvent(self, event) -> None:  # type: ignore[override]
            if self.binding is None or not self.binding.is_ready:
                return
            mods = event.modifiers()
            ctrl = bool(mods & Qt.KeyboardModifier.ControlModifier)
            shift = bool(mods & Qt.KeyboardModifier.ShiftModifier)
            if ctrl and shift and event.key() == Qt.Key.Key_V:
                text = QGuiApplication.clipboard().text()
                if text:
                    self.binding.send_input(encode_paste(text, bracketed=self.screen.bracketed_paste))
                return
            key = event.key()
            name = key_names.get(key)
            if name is None and Qt.Key.Key_A <= key <= Qt.Key.Key_Z:
                name = chr(int(key))
            payload = encode_key(
                name or "",
                event.text(),
                ctrl=ctrl,
                alt=bool(mods & Qt.KeyboardModifier.AltModifier),
                application_cursor=self.screen.application_cursor,
            )
            if payload:
                self.binding.send_input(payload)

        def paintEvent(self, _event) -> None:  # type: ignore[override]
            painter = QPainter(self)
            painter.fillRect(self.rect(), QColor("#0b0f14"))
            painter.setFont(self._font)
            painter.setPen(QColor("#e5edf7"))
            binding = self.binding
            state = binding.state if binding is not None else ViewState.IDLE
            banner = view_status_text(
                state,
                error=binding.last_error if binding is not None else None,
                exit_code=binding.exit_code if binding is not None else None,
            )
            padding = self._service.padding
            dpr = float(self.devicePixelRatioF()) or 1.0
            cell_w = self.cell.scaled_cell_width(dpr) / dpr
            cell_h = self.cell.scaled_line_height(dpr) / dpr
            ascent = QFontMetricsF(self._font).ascent()
            for index, line in enumerate(self.screen.display()):
                y = padding.top + index * cell_h + ascent
                for col, char in enumerate(line):
                    if char != " ":
                        painter.drawText(int(padding.left + col * cell_w), int(y), char)
            if state in (ViewState.READY,) and self.screen.cursor_visible():
                x, y = self.screen.cursor()
                painter.fillRect(
                    int(padding.left + x * cell_w),
                    int(padding.top + y * cell_h),
                    max(1, int(cell_w)),
                    max(1, int(cell_h)),
                    QColor(229, 237, 247, 110),
                )
            if banner:
                painter.setPen(QColor("#f87171") if state == ViewState.FAILED else QColor("#94a3b8"))
                painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, banner)
            painter.end()

    class TerminalWindow(QMainWindow):  # pragma: no cover
        def __init__(self, view: TerminalView) -> None:
            super().__init__()
            self.view = view
            self.setWindowTitle(title)
            self.setCentralWidget(view)
            self.resize(900, 560)

        def closeEvent(self, event) -> None:  # type: ignore[override]
            binding = self.view.binding
            if binding is not None:
                if close_session_on_exit:
                    binding.close()
                else:
                    binding.unmount()
            event.accept()

    app = QApplication.instance() or QApplication(sys.argv)  # pragma: no cover
    scheduler = QtScheduler(app)  # pragma: no cover
    view = TerminalView(service_factory(scheduler))  # pragma: no cover
    window = TerminalWindow(view)  # pragma: no cover
    window.show()  # pragma: no cover
    view.mount(options, session_id, initial_output)  # pragma: no cover
    view.setFocus()  # pragma: no cover
    app.exec()  # pragma: no cover
    return int(ExitCode.SUCCESS)  # pragma: no cover
