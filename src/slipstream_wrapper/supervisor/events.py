"""Status/log fan-out to observers."""

import queue
import threading
from collections.abc import Callable
from typing import TypeAlias

from ..common.logging import get_logger
from .state import ErrorEvent, LogEntry, StatusEvent

logger = get_logger(__name__)

SinkEvent: TypeAlias = StatusEvent | LogEntry | ErrorEvent
Subscriber: TypeAlias = Callable[[SinkEvent], None]

_STOP = object()


class StatusSink:
    """Publishes status transitions, log lines and errors to subscribers.

    ``publish*`` only enqueues and returns; a daemon dispatcher thread
    delivers events in order. A failing subscriber is logged and skipped so
    it cannot affect the publisher or other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._queue: queue.Queue[object] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._closed = False
        self._last_status: StatusEvent | None = None

    @property
    def last_status(self) -> StatusEvent | None:
        """Most recently published status event."""
        return self._last_status

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Returns:
            Function that removes the subscriber again
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: StatusEvent) -> None:
        self._last_status = event
        logger.info("Status", stage1=str(event.stage1), stage2=str(event.stage2), state=event.state.value)
        self._enqueue(event)

    def publish_log(self, source: str, line: str) -> None:
        self._enqueue(LogEntry(source=source, line=line))

    def publish_error(self, title: str, detail: str = "") -> None:
        logger.error(title, detail=detail)
        self._enqueue(ErrorEvent(title=title, detail=detail))

    def flush(self, timeout: float = 2.0) -> bool:
        """Wait until everything published so far has been delivered."""
        if self._thread is None or threading.current_thread() is self._thread:
            return True
        done = threading.Event()
        self._queue.put(done)
        return done.wait(timeout)

    def close(self, timeout: float = 2.0) -> None:
        """Deliver pending events and stop the dispatcher."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        if thread is not None:
            self._queue.put(_STOP)
            thread.join(timeout)

    def _enqueue(self, event: SinkEvent) -> None:
        with self._lock:
            if self._closed:
                return
            if self._thread is None:
                self._thread = threading.Thread(target=self._dispatch, name="status-sink", daemon=True)
                self._thread.start()
        self._queue.put(event)

    def _dispatch(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if isinstance(item, threading.Event):
                item.set()
                continue

            with self._lock:
                subscribers = list(self._subscribers)
            for subscriber in subscribers:
                try:
                    subscriber(item)  # type: ignore[arg-type]
                except Exception as e:
                    logger.error("Subscriber failed", subscriber=repr(subscriber), error=str(e))
