"""Terminal session domain models."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

MINIMUM_COLS = 2
MINIMUM_ROWS = 1
DEFAULT_COLS = 80
DEFAULT_ROWS = 24


class SessionKind(str, Enum):
    INSTANCE_SHELL = "instance-shell"
    NODE_SHELL = "node-shell"
    POD_SHELL = "pod-shell"
    POD_LOGS = "pod-logs"


class SessionState(str, Enum):
    RUNNING = "running"
    CLOSED = "closed"
    EXITED = "exited"


class ViewState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"
    ENDED = "ended"
    DETACHED = "detached"


@dataclass(frozen=True)
class Geometry:
    cols: int
    rows: int
    cell_width_px: float
    cell_height_px: float

    @property
    def grid(self) -> tuple[int, int]:
        return (self.cols, self.rows)

    def is_valid(self, *, minimum_cols: int = MINIMUM_COLS, minimum_rows: int = MINIMUM_ROWS) -> bool:
        return is_valid_grid(self.cols, self.rows, minimum_cols=minimum_cols, minimum_rows=minimum_rows)


def is_valid_grid(
    cols: object,
    rows: object,
    *,
    minimum_cols: int = MINIMUM_COLS,
    minimum_rows: int = MINIMUM_ROWS,
) -> bool:
    for value, minimum in ((cols, minimum_cols), (rows, minimum_rows)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if isinstance(value, float) and (math.isnan(value) or not value.is_integer()):
            return False
        if value < minimum:
            return False
    return True


@dataclass(frozen=True)
class SpawnOptions:
    command: str
    args: tuple[str, ...] = ()
    cwd: str | None = None
    env: dict[str, str] | None = field(default=None, hash=False, compare=False)

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    command: tuple[str, ...]
    cols: int
    rows: int
    created_at: float
    state: SessionState
    cwd: str | None = None
    pid: int | None = None


@dataclass(frozen=True)
class SessionExit:
    session_id: str
    exit_code: int | None
    reason: str


class TerminalGrid(Protocol):
    """Local character grid of a terminal view."""

    @property
    def cols(self) -> int: ...

    @property
    def rows(self) -> int: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def write(self, data: bytes) -> None: ...


class TerminalContainer(Protocol):
    """Host widget whose pixel size drives the grid geometry."""

    def pixel_size(self) -> tuple[float, float]: ...

    def device_pixel_ratio(self) -> float: ...
