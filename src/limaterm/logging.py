"""Application logging helpers.

Session lifecycle lines are emitted as ``session-event session=<id> step=<step>
message=<text>`` by the registry and ``view-event ...`` by the view service;
the thread name column tells PTY reader threads (``pty-reader-<id>``) apart
from the GUI thread.
"""

from __future__ import annotations

import logging as py_logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
LOG_LEVEL_ENV = "LIMATERM_LOG_LEVEL"
LOG_FILE_ENV = "LIMATERM_LOG_FILE"
DEFAULT_LEVEL = "INFO"
DEFAULT_LOG_PATH = Path("~/.config/limaterm/logs/limaterm.log")
_FALLBACK_LOG_PATH = Path(".limaterm/logs/limaterm.log")
_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s:%(lineno)d %(message)s"


def _normalize(level: str) -> str | None:
    normalized = level.strip().upper()
    if normalized == "WARNING":
        normalized = "WARN"
    return normalized if normalized in LOG_LEVELS else None


def resolve_log_level(explicit: str | None = None, environ: Mapping[str, str] | None = None) -> str:
    """Pick the effective level: explicit flag, then ``LIMATERM_LOG_LEVEL``, then INFO."""
    if explicit:
        return _normalize(explicit) or DEFAULT_LEVEL
    env = os.environ if environ is None else environ
    from_env = env.get(LOG_LEVEL_ENV, "")
    if from_env:
        normalized = _normalize(from_env)
        if normalized is not None:
            return normalized
        py_logging.getLogger("limaterm").warning("Ignoring %s=%r; unknown level", LOG_LEVEL_ENV, from_env)
    return DEFAULT_LEVEL


def default_log_path(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    configured = env.get(LOG_FILE_ENV, "").strip()
    candidate = Path(configured) if configured else DEFAULT_LOG_PATH
    try:
        resolved = candidate.expanduser()
    except RuntimeError:
        resolved = (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    else:
        if not resolved.is_absolute():
            resolved = resolved.resolve()
    return resolved


def configure_logging(
    level: str | None = None,
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    resolved = LOG_LEVELS[resolve_log_level(level)]

    logger = py_logging.getLogger("limaterm")
    logger.setLevel(min(resolved, py_logging.DEBUG) if log_file else resolved)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    formatter = py_logging.Formatter(_FORMAT)

    handler = py_logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if log_file:
        try:
            log_path = Path(log_file).expanduser()
        except RuntimeError:
            log_path = Path(log_file)
        if not log_path.is_absolute():
            log_path = log_path.resolve()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = py_logging.FileHandler(log_path, encoding="utf-8")
        except OSError:
            pass
        else:
            # The file keeps every session event even when the console is quiet.
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger
