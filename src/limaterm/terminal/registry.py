"""Process-wide table of live PTY sessions."""

from __future__ import annotations

import logging as py_logging
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from limaterm.errors import ExitCode, LimaTermError, SpawnError, session_not_found
from limaterm.terminal import persistence
from limaterm.terminal.channel import (
    DEFAULT_HISTORY_BYTES,
    DEFAULT_MAX_PENDING_BYTES,
    OutputChannel,
    OutputSink,
    Subscription,
)
from limaterm.terminal.models import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    MINIMUM_COLS,
    MINIMUM_ROWS,
    SessionExit,
    SessionInfo,
    SessionState,
    is_valid_grid,
)
from limaterm.terminal.osc7 import Osc7Parser
from limaterm.terminal.pty_backend import DEFAULT_CLOSE_GRACE_SECONDS, PtyProcessBackend, PtySpawn

logger = py_logging.getLogger(__name__)

ExitListener = Callable[[SessionExit], None]
CwdListener = Callable[[str, str], None]

DEFAULT_MAX_SESSIONS = 32
DEFAULT_RETAINED_EXITS = 16


@dataclass
class _Session:
    session_id: str
    command: tuple[str, ...]
    cols: int
    rows: int
    created_at: float
    channel: OutputChannel
    cwd: str | None = None
    backend: PtyProcessBackend | None = None
    state: SessionState = SessionState.RUNNING
    exit_code: int | None = None
    lock: threading.RLock = field(default_factory=threading.RLock)
    osc7: Osc7Parser = field(default_factory=Osc7Parser)

    def snapshot(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            command=self.command,
            cols=self.cols,
            rows=self.rows,
            created_at=self.created_at,
            state=self.state,
            cwd=self.cwd,
            pid=self.backend.pid if self.backend else None,
        )


class SessionRegistry:
    """Single owner of session existence and stored geometry.

    Operations on one session are serialized by that session's lock; a close
    that wins the lock makes every later write/resize fail with SessionNotFound.
    """

    def __init__(
        self,
        *,
        spawn: PtySpawn | None = None,
        close_grace_seconds: float = DEFAULT_CLOSE_GRACE_SECONDS,
        max_pending_output_bytes: int = DEFAULT_MAX_PENDING_BYTES,
        history_bytes: int = DEFAULT_HISTORY_BYTES,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        retained_exits: int = DEFAULT_RETAINED_EXITS,
        minimum_cols: int = MINIMUM_COLS,
        minimum_rows: int = MINIMUM_ROWS,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], float] = time.time,
        backend_options: dict[str, object] | None = None,
    ) -> None:
        self._spawn = spawn
        self.close_grace_seconds = close_grace_seconds
        self.max_pending_output_bytes = max_pending_output_bytes
        self.history_bytes = history_bytes
        self.max_sessions = max_sessions
        self.retained_exits = retained_exits
        self.minimum_cols = minimum_cols
        self.minimum_rows = minimum_rows
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock
        self._backend_options = dict(backend_options or {})
        self._lock = threading.RLock()
        self._sessions: dict[str, _Session] = {}
        # Exited sessions stay readable until their queued output is drained or evicted.
        self._exited: OrderedDict[str, _Session] = OrderedDict()
        self._exit_listeners: list[ExitListener] = []
        self._cwd_listeners: list[CwdListener] = []

    def spawn(
        self,
        command: str,
        args: list[str] | tuple[str, ...] = (),
        cwd: str | None = None,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
        *,
        env: dict[str, str] | None = None,
    ) -> str:
        if not is_valid_grid(cols, rows, minimum_cols=self.minimum_cols, minimum_rows=self.minimum_rows):
            raise LimaTermError(
                f"Invalid terminal size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint=f"Use at least {self.minimum_cols} columns and {self.minimum_rows} row.",
            )
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise SpawnError(
                    f"Session limit reached: {self.max_sessions}",
                    hint="Close another terminal before opening a new one.",
                )
            session_id = self._id_factory()
            if session_id in self._sessions:
                raise SpawnError(f"Duplicate session id: {session_id}")
            self._exited.pop(session_id, None)
            argv = (command, *args)
            session = _Session(
                session_id=session_id,
                command=tuple(argv),
                cols=int(cols),
                rows=int(rows),
                created_at=self._clock(),
                cwd=cwd,
                channel=OutputChannel(
                    session_id,
                    max_pending_bytes=self.max_pending_output_bytes,
                    history_bytes=self.history_bytes,
                ),
            )
            # Registered before the reader starts so an instant exit finds the entry.
            self._sessions[session_id] = session

        try:
            backend = PtyProcessBackend.spawn(
                session_id,
                list(argv),
                cols=int(cols),
                rows=int(rows),
                cwd=cwd,
                env=env,
                spawn=self._spawn,
                on_output=lambda data: self._handle_output(session, data),
                on_exit=lambda code: self._handle_exit(session, code),
                **self._backend_options,
            )
        except Exception:
            with self._lock:
                self._sessions.pop(session_id, None)
            raise

        with session.lock:
            session.backend = backend
            backend.start()
        logger.info(
            "session-event session=%s step=spawn message=Spawned %s (%sx%s pid=%s)",
            session_id,
            " ".join(argv),
            cols,
            rows,
            backend.pid,
        )
        return session_id

    def attach(self, session_id: str, sink: OutputSink, *, replay_history: bool = False) -> Subscription:
        """Bind the output consumer.

        For a process that already exited, the output it produced while nobody
        was bound is flushed to ``sink`` and the returned subscription is
        inactive.
        """
        session = self._lookup(session_id)
        with session.lock:
            if session.state is SessionState.EXITED:
                subscription = session.channel.attach(sink, replay_history=replay_history)
                logger.info(
                    "session-event session=%s step=attach message=Drained output of exited process.",
                    session_id,
                )
                return subscription
            self._ensure_running(session)
            subscription = session.channel.attach(sink, replay_history=replay_history)
        logger.info("session-event session=%s step=attach message=Output consumer bound.", session_id)
        return subscription

    def detach(self, session_id: str, subscription: Subscription | None = None) -> None:
        """Silence the current consumer; the process keeps running."""
        with self._lock:
            session = self._sessions.get(session_id)
        if subscription is not None:
            subscription.cancel()
        elif session is not None:
            session.channel.detach()
        logger.info("session-event session=%s step=detach message=Output consumer silenced.", session_id)

    def write(self, session_id: str, data: str | bytes) -> None:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        session = self._require(session_id)
        with session.lock:
            backend = self._ensure_running(session)
            backend.write(payload)

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        """Apply a new window size. Returns False when the size is unchanged."""
        if not is_valid_grid(cols, rows, minimum_cols=self.minimum_cols, minimum_rows=self.minimum_rows):
            raise LimaTermError(
                f"Invalid terminal size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint=f"Use at least {self.minimum_cols} columns and {self.minimum_rows} row.",
            )
        session = self._require(session_id)
        with session.lock:
            backend = self._ensure_running(session)
            if (session.cols, session.rows) == (cols, rows):
                return False
            backend.resize(int(cols), int(rows))
            session.cols, session.rows = int(cols), int(rows)
        logger.debug("session-event session=%s step=resize message=%sx%s", session_id, cols, rows)
        return True

    def close(self, session_id: str) -> None:
        """Terminate the process and drop the entry. A second call is a logged no-op."""
        with self._lock:
            session = self._sessions.get(session_id)
            exited = self._exited.pop(session_id, None) if session is None else None
        if exited is not None:
            logger.info("session-event session=%s step=close message=Exited session discarded.", session_id)
            return
        if session is None:
            logger.info("session-event session=%s step=close message=Already closed.", session_id)
            return

        with session.lock:
            if session.state is not SessionState.RUNNING:
                logger.info("session-event session=%s step=close message=Already closed.", session_id)
                return
            session.state = SessionState.CLOSED
            with self._lock:
                self._sessions.pop(session_id, None)
            session.channel.close()
            exit_code = None
            if session.backend is not None:
                exit_code = session.backend.close(grace_seconds=self.close_grace_seconds)

        logger.info("session-event session=%s step=close message=Session closed.", session_id)
        self._notify_exit(SessionExit(session_id=session_id, exit_code=exit_code, reason="close"))

    def close_all(self) -> None:
        with self._lock:
            ids = list(self._sessions)
            self._exited.clear()
        for session_id in ids:
            self.close(session_id)

    def get(self, session_id: str) -> SessionInfo:
        return self._require(session_id).snapshot()

    def exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def list_sessions(self) -> list[SessionInfo]:
        with self._lock:
            sessions = [self._sessions[key] for key in sorted(self._sessions)]
        return [session.snapshot() for session in sessions]

    def history(self, session_id: str) -> bytes:
        return self._lookup(session_id).channel.history()

    def exit_info(self, session_id: str) -> SessionExit | None:
        """How a retained exited session ended, or None if it is live or unknown."""
        with self._lock:
            session = self._exited.get(session_id)
        if session is None:
            return None
        return SessionExit(session_id=session_id, exit_code=session.exit_code, reason="exit")

    def undelivered_bytes(self, session_id: str) -> int:
        with self._lock:
            session = self._sessions.get(session_id) or self._exited.get(session_id)
        return session.channel.pending_bytes if session is not None else 0

    def add_exit_listener(self, listener: ExitListener) -> Callable[[], None]:
        with self._lock:
            self._exit_listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._exit_listeners:
                    self._exit_listeners.remove(listener)

        return remove

    def add_cwd_listener(self, listener: CwdListener) -> Callable[[], None]:
        with self._lock:
            self._cwd_listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._cwd_listeners:
                    self._cwd_listeners.remove(listener)

        return remove

    def save_all_sessions(self, directory: str | Path) -> list[str]:
        """Persist history and cwd of every session with output; return the saved ids."""
        with self._lock:
            snapshots = [
                (session.session_id, session.channel.history(), session.cwd)
                for session in (*self._sessions.values(), *self._exited.values())
            ]
        saved: list[str] = []
        for session_id, history, cwd in snapshots:
            if not history:
                continue
            persistence.save_session_history(directory, session_id, history)
            persistence.save_session_metadata(directory, session_id, cwd=cwd)
            saved.append(session_id)
        return saved

    def _require(self, session_id: str) -> _Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise session_not_found(session_id)
        return session

    def _lookup(self, session_id: str) -> _Session:
        with self._lock:
            session = self._sessions.get(session_id) or self._exited.get(session_id)
        if session is None:
            raise session_not_found(session_id)
        return session

    def _ensure_running(self, session: _Session) -> PtyProcessBackend:
        if session.state is not SessionState.RUNNING or session.backend is None:
            raise session_not_found(session.session_id)
        return session.backend

    def _handle_output(self, session: _Session, data: bytes) -> None:
        cwd = session.osc7.feed(data)
        if cwd and cwd != session.cwd:
            session.cwd = cwd
            logger.debug("session-event session=%s step=cwd message=%s", session.session_id, cwd)
            with self._lock:
                listeners = list(self._cwd_listeners)
            for listener in listeners:
                try:
                    listener(session.session_id, cwd)
                except Exception:
                    logger.exception("session-event session=%s cwd listener failed", session.session_id)
        session.channel.publish(data)

    def _handle_exit(self, session: _Session, exit_code: int | None) -> None:
        with session.lock:
            if session.state is not SessionState.RUNNING:
                return
            session.state = SessionState.EXITED
            session.exit_code = exit_code
            session.channel.close(keep_pending=True)
            with self._lock:
                self._sessions.pop(session.session_id, None)
                self._exited[session.session_id] = session
                while len(self._exited) > self.retained_exits:
                    evicted, _ = self._exited.popitem(last=False)
                    logger.debug("session-event session=%s step=evict message=Exited session dropped.", evicted)
        logger.info(
            "session-event session=%s step=exit message=Process exited (code=%s).",
            session.session_id,
            exit_code,
        )
        self._notify_exit(SessionExit(session_id=session.session_id, exit_code=exit_code, reason="exit"))

    def _notify_exit(self, event: SessionExit) -> None:
        with self._lock:
            listeners = list(self._exit_listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("session-event session=%s exit listener failed", event.session_id)
