"""PTY-backed child process ownership for terminal sessions."""

from __future__ import annotations

import codecs
import logging as py_logging
import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from contextlib import suppress

from limaterm.errors import BackendCommunicationError, LimaTermError, SpawnError, session_not_found

logger = py_logging.getLogger(__name__)

# (argv, cwd, env, (rows, cols)) -> process object with the ptyprocess interface
PtySpawn = Callable[[list[str], str | None, dict[str, str] | None, tuple[int, int]], object]

DEFAULT_READ_SIZE = 4096
DEFAULT_CLOSE_GRACE_SECONDS = 3.0
_CLOSE_POLL_SECONDS = 0.05
_EXIT_REAP_SECONDS = 0.5


def _spawn_with_ptyprocess(
    argv: list[str],
    cwd: str | None,
    env: dict[str, str] | None,
    dimensions: tuple[int, int],
) -> object:
    try:
        from ptyprocess import PtyProcess
    except Exception as exc:
        raise SpawnError(
            "ptyprocess backend is unavailable.",
            hint="Install the ptyprocess package.",
        ) from exc
    return PtyProcess.spawn(argv, cwd=cwd, env=env, dimensions=dimensions)


class _WinPtyProcess:
    """Byte-oriented view over pywinpty's text-oriented PtyProcess."""

    def __init__(self, process: object) -> None:
        self._process = process
        # A multibyte character may be split across two write() calls.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def read(self, size: int = DEFAULT_READ_SIZE) -> bytes:
        chunk = self._process.read(size)
        if isinstance(chunk, str):
            return chunk.encode("utf-8")
        return chunk

    def write(self, data: bytes) -> int:
        text = self._decoder.decode(data)
        if text:
            self._process.write(text)
        return len(data)

    def __getattr__(self, name: str) -> object:
        return getattr(self._process, name)


def _spawn_with_pywinpty(
    argv: list[str],
    cwd: str | None,
    env: dict[str, str] | None,
    dimensions: tuple[int, int],
) -> object:
    try:
        from winpty import PtyProcess
    except Exception as exc:
        raise SpawnError(
            "pywinpty backend is unavailable.",
            hint="Install the pywinpty package on Windows.",
        ) from exc
    return _WinPtyProcess(
        PtyProcess.spawn(subprocess.list2cmdline(argv), cwd=cwd, env=env, dimensions=dimensions)
    )


def default_spawn() -> PtySpawn:
    if sys.platform == "win32":
        return _spawn_with_pywinpty
    return _spawn_with_ptyprocess


def resolve_command(command: str) -> str:
    if not command.strip():
        raise SpawnError("PTY command cannot be empty.", hint="Provide a shell or program to run.")
    resolved = shutil.which(command)
    if resolved is None:
        raise SpawnError(
            f"Command not found: {command}",
            hint="Check that the executable is installed and on PATH.",
        )
    return resolved


class PtyProcessBackend:
    """One child process attached to a pseudo-terminal.

    A daemon reader thread pushes output chunks to ``on_output`` for as long as
    the process lives, then reports the exit status to ``on_exit`` exactly once.
    """

    def __init__(
        self,
        session_id: str,
        process: object,
        *,
        on_output: Callable[[bytes], None],
        on_exit: Callable[[int | None], None],
        read_size: int = DEFAULT_READ_SIZE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self._process = process
        self._on_output = on_output
        self._on_exit = on_exit
        self._read_size = read_size
        self._sleep = sleep
        self._clock = clock
        self._write_lock = threading.Lock()
        self._closed = False
        self._reader: threading.Thread | None = None

    @classmethod
    def spawn(
        cls,
        session_id: str,
        argv: list[str],
        *,
        cols: int,
        rows: int,
        on_output: Callable[[bytes], None],
        on_exit: Callable[[int | None], None],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        spawn: PtySpawn | None = None,
        **kwargs: object,
    ) -> PtyProcessBackend:
        if not argv:
            raise SpawnError("PTY command cannot be empty.", hint="Provide a shell or program to run.")
        if cwd and not os.path.isdir(cwd):
            raise SpawnError(
                f"Working directory does not exist: {cwd}",
                hint="Choose an existing directory for the terminal.",
            )
        spawner = spawn or default_spawn()
        resolved = [resolve_command(argv[0]), *argv[1:]] if spawn is None else list(argv)
        try:
            process = spawner(resolved, cwd, env, (rows, cols))
        except LimaTermError:
            raise
        except (FileNotFoundError, PermissionError) as exc:
            raise SpawnError(
                f"Cannot execute {argv[0]}: {exc.strerror or exc}",
                hint="Check the executable path and its permissions.",
            ) from exc
        except Exception as exc:
            raise SpawnError(
                "Failed to start PTY process.",
                hint=str(exc) or "Check system resources and the command line.",
            ) from exc
        return cls(session_id, process, on_output=on_output, on_exit=on_exit, **kwargs)

    @property
    def pid(self) -> int | None:
        pid = getattr(self._process, "pid", None)
        return pid if isinstance(pid, int) else None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._reader is not None:
            return
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"pty-reader-{self.session_id[:8]}",
            daemon=True,
        )
        self._reader.start()

    def join(self, timeout: float | None = None) -> None:
        if self._reader is not None:
            self._reader.join(timeout)

    def is_alive(self) -> bool:
        try:
            return bool(self._process.isalive())
        except Exception:
            return False

    def exit_status(self) -> int | None:
        status = getattr(self._process, "exitstatus", None)
        if isinstance(status, int):
            return status
        signal_status = getattr(self._process, "signalstatus", None)
        if isinstance(signal_status, int):
            return -signal_status
        return None

    def write(self, data: bytes) -> None:
        if self._closed:
            raise session_not_found(self.session_id)
        view = memoryview(data)
        with self._write_lock:
            try:
                while view:
                    written = self._process.write(bytes(view))
                    if not isinstance(written, int) or written >= len(view):
                        break
                    view = view[written:]
            except (EOFError, OSError) as exc:
                if not self.is_alive():
                    raise session_not_found(self.session_id) from exc
                raise BackendCommunicationError(
                    f"Failed to write to session {self.session_id}.",
                    hint=str(exc) or "Verify the terminal process is healthy.",
                    session_id=self.session_id,
                ) from exc

    def resize(self, cols: int, rows: int) -> None:
        if self._closed:
            raise session_not_found(self.session_id)
        try:
            self._process.setwinsize(rows, cols)
        except Exception as exc:
            if not self.is_alive():
                raise session_not_found(self.session_id) from exc
            raise BackendCommunicationError(
                f"Failed to resize session {self.session_id}.",
                hint=str(exc) or "Verify the PTY supports window-size changes.",
                session_id=self.session_id,
            ) from exc

    def close(self, *, grace_seconds: float = DEFAULT_CLOSE_GRACE_SECONDS) -> int | None:
        """Terminate gracefully, then force after ``grace_seconds``. Safe to call twice."""
        if self._closed:
            return self.exit_status()
        self._closed = True

        if self.is_alive():
            self._signal(force=False)
            deadline = self._clock() + max(0.0, grace_seconds)
            while self.is_alive() and self._clock() < deadline:
                self._sleep(_CLOSE_POLL_SECONDS)
            if self.is_alive():
                logger.warning(
                    "pty-close session=%s pid=%s ignored graceful signal; forcing",
                    self.session_id,
                    self.pid,
                )
                self._signal(force=True)

        with suppress(Exception):
            self._process.close(force=True)
        return self.exit_status()

    def _signal(self, *, force: bool) -> None:
        terminate = getattr(self._process, "terminate", None)
        if callable(terminate):
            with suppress(Exception):
                terminate(force=force)
            return
        pid = self.pid
        if pid is not None:
            with suppress(OSError):
                os.kill(pid, signal.SIGKILL if force else signal.SIGTERM)

    def _read_loop(self) -> None:
        try:
            while True:
                try:
                    chunk = self._process.read(self._read_size)
                except EOFError:
                    break
                except OSError as exc:
                    logger.debug("pty-read session=%s ended: %s", self.session_id, exc)
                    break
                if not chunk:
                    if not self.is_alive():
                        break
                    self._sleep(0.01)
                    continue
                if isinstance(chunk, str):
                    chunk = chunk.encode("utf-8")
                try:
                    self._on_output(chunk)
                except Exception:
                    logger.exception("pty-read session=%s output handler failed", self.session_id)
        finally:
            exit_code = self._reap()
            try:
                self._on_exit(exit_code)
            except Exception:
                logger.exception("pty-read session=%s exit handler failed", self.session_id)

    def _reap(self) -> int | None:
        deadline = self._clock() + _EXIT_REAP_SECONDS
        while self.is_alive() and self._clock() < deadline:
            self._sleep(_CLOSE_POLL_SECONDS)
        return self.exit_status()
