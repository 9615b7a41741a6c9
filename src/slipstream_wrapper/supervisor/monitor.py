"""Periodic liveness polling of the running stages."""

import threading
from collections.abc import Callable

from ..common.logging import get_logger
from ..process.launcher import ProcessHandle
from .events import StatusSink
from .state import StageStatus, StatusEvent, SupervisorState

logger = get_logger(__name__)

FailureCallback = Callable[[int, str], None]


class HealthMonitor:
    """Cancellable loop checking both stages every ``interval`` seconds.

    While both are alive it republishes ``Running/Running``. On the first
    dead stage it publishes an error, calls ``on_failure`` exactly once with
    its generation and exits; the callback runs on the monitor thread.
    """

    def __init__(
        self,
        stage1: ProcessHandle,
        stage2: ProcessHandle,
        interval: float,
        on_failure: FailureCallback,
        sink: StatusSink,
        generation: int,
    ):
        self._stage1 = stage1
        self._stage2 = stage2
        self._interval = interval
        self._on_failure = on_failure
        self._sink = sink
        self.generation = generation
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"health-monitor-{generation}", daemon=True)

    def start(self) -> "HealthMonitor":
        logger.debug("Starting health monitor", generation=self.generation, interval=self._interval)
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not threading.current_thread() and self._thread.ident is not None:
            self._thread.join(timeout)

    def wait(self, seconds: float) -> bool:
        """Sleep on the monitor thread; True if cancelled meanwhile."""
        return self._cancelled.wait(seconds)

    def _run(self) -> None:
        while not self._cancelled.wait(self._interval):
            stage1_alive = self._stage1.is_alive()
            stage2_alive = self._stage2.is_alive()
            if self._cancelled.is_set():
                return

            if stage1_alive and stage2_alive:
                self._sink.publish(
                    StatusEvent(
                        stage1=StageStatus.running(),
                        stage2=StageStatus.running(),
                        state=SupervisorState.RUNNING,
                    )
                )
                continue

            detail = (
                f"{self._stage1.name} status: {'Running' if stage1_alive else 'Dead'}. "
                f"{self._stage2.name} status: {'Running' if stage2_alive else 'Dead'}."
            )
            logger.warning("Tunnel failure detected", generation=self.generation, detail=detail)
            self._sink.publish_error("Connection Dropped", detail)
            self._on_failure(self.generation, detail)
            return
