"""Forwards encoded terminal input to the bound session."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable

from limaterm.errors import SessionNotFound

logger = py_logging.getLogger(__name__)

FOCUS_IN = b"\x1b[I"
FOCUS_OUT = b"\x1b[O"

SessionWriter = Callable[[str, bytes], None]


class InputBridge:
    """Pure forwarding conduit for one (view, session) pairing.

    Bytes go out exactly as the terminal encoder produced them and in call
    order. Forwarding stops once the session is unbound or the bridge is
    disposed. A session that has ended unbinds the bridge instead of raising;
    transport failures still reach the caller.
    """

    def __init__(
        self,
        write: SessionWriter,
        *,
        session_id: str | None = None,
        skip_initial_focus: bool = True,
    ) -> None:
        self._write = write
        self._session_id: str | None = None
        self._skip_initial_focus = skip_initial_focus
        self._focus_pending_skip = False
        self._disposed = False
        self.focus_reporting = False
        if session_id is not None:
            self.bind(session_id)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def active(self) -> bool:
        return self._session_id is not None and not self._disposed

    def bind(self, session_id: str) -> None:
        if self._disposed:
            return
        self._session_id = session_id
        self._focus_pending_skip = self._skip_initial_focus

    def unbind(self) -> None:
        self._session_id = None

    def dispose(self) -> None:
        self._disposed = True
        self._session_id = None

    def forward(self, data: bytes | str) -> bool:
        """Send input to the session; returns False when nothing was sent."""
        session_id = self._session_id
        if session_id is None or self._disposed:
            return False
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload:
            return False
        try:
            self._write(session_id, payload)
        except SessionNotFound:
            logger.info("input-bridge session=%s ended; input dropped", session_id)
            if self._session_id == session_id:
                self._session_id = None
            return False
        return True

    def focus(self, focused: bool) -> bool:
        if not self.focus_reporting:
            return False
        if focused and self._focus_pending_skip:
            self._focus_pending_skip = False
            return False
        return self.forward(FOCUS_IN if focused else FOCUS_OUT)
