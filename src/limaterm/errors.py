"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    SPAWN_ERROR = 5
    SESSION_NOT_FOUND = 6
    VALIDATION_ERROR = 7
    BACKEND_ERROR = 8
    GEOMETRY_UNAVAILABLE = 9


@dataclass
class LimaTermError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class SpawnError(LimaTermError):
    """The PTY process could not be created."""

    code: ExitCode = ExitCode.SPAWN_ERROR


@dataclass
class SessionNotFound(LimaTermError):
    """Operation against an unknown or already terminated session."""

    code: ExitCode = ExitCode.SESSION_NOT_FOUND
    session_id: str = ""


@dataclass
class GeometryUnavailable(LimaTermError):
    """The container has no usable space; defer and retry on the next observation."""

    code: ExitCode = ExitCode.GEOMETRY_UNAVAILABLE


@dataclass
class BackendCommunicationError(LimaTermError):
    code: ExitCode = ExitCode.BACKEND_ERROR
    session_id: str = ""


def session_not_found(session_id: str) -> SessionNotFound:
    return SessionNotFound(
        f"Session not found: {session_id}",
        hint="The session has ended; open a new terminal.",
        session_id=session_id,
    )


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
