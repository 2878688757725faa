"""Single-consumer output channel with revocable subscriptions."""

from __future__ import annotations

import logging as py_logging
import threading
from collections import deque
from collections.abc import Callable

logger = py_logging.getLogger(__name__)

OutputSink = Callable[[bytes], None]

DEFAULT_MAX_PENDING_BYTES = 1024 * 1024
DEFAULT_HISTORY_BYTES = 100 * 1024


class Subscription:
    """Handle for one consumer; cancel() revokes delivery synchronously."""

    def __init__(self, channel: OutputChannel, sink: OutputSink) -> None:
        self._channel = channel
        self._sink = sink
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        self._channel._revoke(self)

    def _deliver(self, data: bytes) -> None:
        try:
            self._sink(data)
        except Exception:
            logger.exception("output-channel session=%s sink raised; chunk dropped", self._channel.session_id)


class OutputChannel:
    """Streams process output to at most one consumer at a time.

    Delivery runs under the channel lock, so once Subscription.cancel() or a
    rebinding attach() returns, the previous sink is never called again. Output
    produced while nobody is bound is queued and flushed to the next consumer
    ahead of any newer chunk. Sinks must not block.
    """

    def __init__(
        self,
        session_id: str,
        *,
        max_pending_bytes: int = DEFAULT_MAX_PENDING_BYTES,
        history_bytes: int = DEFAULT_HISTORY_BYTES,
    ) -> None:
        self.session_id = session_id
        self.max_pending_bytes = max_pending_bytes
        self.history_bytes = history_bytes
        self._lock = threading.RLock()
        self._subscription: Subscription | None = None
        self._pending: deque[bytes] = deque()
        self._pending_size = 0
        self._history = bytearray()
        self._dropped = 0
        self._closed = False

    @property
    def has_consumer(self) -> bool:
        with self._lock:
            return self._subscription is not None

    @property
    def pending_bytes(self) -> int:
        with self._lock:
            return self._pending_size

    @property
    def dropped_bytes(self) -> int:
        with self._lock:
            return self._dropped

    def history(self) -> bytes:
        with self._lock:
            return bytes(self._history)

    def publish(self, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            if self._closed:
                return
            self._remember(data)
            if self._subscription is not None:
                self._subscription._deliver(data)
                return
            self._enqueue(data)

    def attach(self, sink: OutputSink, *, replay_history: bool = False) -> Subscription:
        with self._lock:
            previous = self._subscription
            if previous is not None:
                previous._active = False
                self._subscription = None
                logger.debug("output-channel session=%s unplugged previous consumer", self.session_id)

            subscription = Subscription(self, sink)
            if replay_history:
                backlog = [bytes(self._history)] if self._history else []
            else:
                backlog = list(self._pending)
            self._pending.clear()
            self._pending_size = 0
            for chunk in backlog:
                subscription._deliver(chunk)
            if not self._closed:
                self._subscription = subscription
            else:
                subscription._active = False
            logger.debug(
                "output-channel session=%s attached consumer flushed=%s replay=%s",
                self.session_id,
                sum(len(chunk) for chunk in backlog),
                replay_history,
            )
            return subscription

    def detach(self) -> None:
        with self._lock:
            if self._subscription is not None:
                self._revoke(self._subscription)

    def close(self, *, keep_pending: bool = False) -> None:
        """Stop accepting output. With keep_pending the queue stays for one last attach()."""
        with self._lock:
            self._closed = True
            if self._subscription is not None:
                self._subscription._active = False
                self._subscription = None
            if not keep_pending:
                self._pending.clear()
                self._pending_size = 0

    def _revoke(self, subscription: Subscription) -> None:
        with self._lock:
            subscription._active = False
            if self._subscription is subscription:
                self._subscription = None

    def _remember(self, data: bytes) -> None:
        if self.history_bytes <= 0:
            return
        self._history.extend(data)
        overflow = len(self._history) - self.history_bytes
        if overflow > 0:
            del self._history[:overflow]

    def _enqueue(self, data: bytes) -> None:
        self._pending.append(data)
        self._pending_size += len(data)
        overflow = self._pending_size - self.max_pending_bytes
        if overflow <= 0:
            return
        dropped = 0
        while overflow > 0 and self._pending:
            head = self._pending[0]
            if len(head) <= overflow:
                self._pending.popleft()
                overflow -= len(head)
                dropped += len(head)
            else:
                self._pending[0] = head[overflow:]
                dropped += overflow
                overflow = 0
        self._pending_size -= dropped
        self._dropped += dropped
        logger.warning(
            "output-channel session=%s pending buffer full; dropped=%s total_dropped=%s",
            self.session_id,
            dropped,
            self._dropped,
        )
