"""PTY session management and terminal geometry synchronization."""

from .channel import OutputChannel, Subscription
from .commands import build_session_command
from .geometry import CellMetrics, GeometryFitter, Padding, compute_geometry
from .input_bridge import InputBridge
from .models import (
    Geometry,
    SessionExit,
    SessionInfo,
    SessionKind,
    SessionState,
    SpawnOptions,
    ViewState,
)
from .pty_backend import PtyProcessBackend
from .registry import SessionRegistry
from .resize import ResizeCoordinator, ResizeState, Scheduler
from .service import SessionBinding, SessionEvent, TerminalService

__all__ = [
    "build_session_command",
    "CellMetrics",
    "compute_geometry",
    "Geometry",
    "GeometryFitter",
    "InputBridge",
    "OutputChannel",
    "Padding",
    "PtyProcessBackend",
    "ResizeCoordinator",
    "ResizeState",
    "Scheduler",
    "SessionBinding",
    "SessionEvent",
    "SessionExit",
    "SessionInfo",
    "SessionKind",
    "SessionRegistry",
    "SessionState",
    "SpawnOptions",
    "Subscription",
    "TerminalService",
    "ViewState",
]
