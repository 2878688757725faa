"""On-disk session history and metadata."""

from __future__ import annotations

import logging as py_logging
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ValidationError

from limaterm.errors import ExitCode, LimaTermError

logger = py_logging.getLogger(__name__)

_HISTORY_SUFFIX = ".history"
_METADATA_SUFFIX = ".meta.json"


class SessionMetadata(BaseModel):
    cwd: str | None = None


@dataclass(frozen=True)
class SavedSession:
    session_id: str
    history: bytes
    cwd: str | None = None


def _history_path(directory: str | Path, session_id: str) -> Path:
    return Path(directory).expanduser() / f"{session_id}{_HISTORY_SUFFIX}"


def _metadata_path(directory: str | Path, session_id: str) -> Path:
    return Path(directory).expanduser() / f"{session_id}{_METADATA_SUFFIX}"


def _validate_session_id(session_id: str) -> str:
    value = session_id.strip()
    if not value or "/" in value or "\\" in value or value in {".", ".."}:
        raise LimaTermError(
            f"Invalid session id for persistence: {session_id!r}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Session ids must be plain file names.",
        )
    return value


def save_session_history(directory: str | Path, session_id: str, history: bytes) -> Path:
    path = _history_path(directory, _validate_session_id(session_id))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(history)
    return path


def load_session_history(directory: str | Path, session_id: str) -> bytes:
    path = _history_path(directory, _validate_session_id(session_id))
    try:
        return path.read_bytes()
    except OSError as exc:
        raise LimaTermError(
            f"No saved history for session {session_id}.",
            code=ExitCode.RUNTIME_ERROR,
            hint=str(exc),
        ) from exc


def save_session_metadata(directory: str | Path, session_id: str, *, cwd: str | None) -> Path:
    path = _metadata_path(directory, _validate_session_id(session_id))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SessionMetadata(cwd=cwd).model_dump_json(), encoding="utf-8")
    return path


def load_session_metadata(directory: str | Path, session_id: str) -> SessionMetadata:
    path = _metadata_path(directory, _validate_session_id(session_id))
    try:
        return SessionMetadata.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        raise LimaTermError(
            f"No saved metadata for session {session_id}.",
            code=ExitCode.RUNTIME_ERROR,
            hint=str(exc),
        ) from exc


def delete_session_history(directory: str | Path, session_id: str) -> None:
    checked = _validate_session_id(session_id)
    for path in (_history_path(directory, checked), _metadata_path(directory, checked)):
        with suppress(FileNotFoundError):
            path.unlink()


def cleanup_old_histories(
    directory: str | Path,
    max_age_seconds: float,
    *,
    now: float | None = None,
) -> list[str]:
    """Delete histories (and their metadata) older than ``max_age_seconds``."""
    root = Path(directory).expanduser()
    if not root.is_dir():
        return []
    current = time.time() if now is None else now
    removed: list[str] = []
    for path in sorted(root.glob(f"*{_HISTORY_SUFFIX}")):
        try:
            age = current - path.stat().st_mtime
        except OSError:
            continue
        if age <= max_age_seconds:
            continue
        session_id = path.name[: -len(_HISTORY_SUFFIX)]
        logger.info("session-history cleanup session=%s age=%.0fs", session_id, age)
        with suppress(OSError):
            path.unlink()
        with suppress(OSError):
            _metadata_path(root, session_id).unlink()
        removed.append(session_id)
    return removed


def list_saved_sessions(directory: str | Path) -> list[str]:
    """Ids with a saved history, most recently written first."""
    root = Path(directory).expanduser()
    if not root.is_dir():
        return []
    entries: list[tuple[float, str]] = []
    for path in root.glob(f"*{_HISTORY_SUFFIX}"):
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        entries.append((mtime, path.name[: -len(_HISTORY_SUFFIX)]))
    return [session_id for _, session_id in sorted(entries, key=lambda item: (-item[0], item[1]))]


def load_saved_session(directory: str | Path, session_id: str) -> SavedSession:
    history = load_session_history(directory, session_id)
    try:
        cwd = load_session_metadata(directory, session_id).cwd
    except LimaTermError as exc:
        logger.warning("session-history restore session=%s metadata unavailable: %s", session_id, exc.hint)
        cwd = None
    return SavedSession(session_id=session_id, history=history, cwd=cwd)
