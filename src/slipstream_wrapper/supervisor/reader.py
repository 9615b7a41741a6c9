"""Background draining of a running stage's output."""

import threading
from collections.abc import Sequence

from ..common.logging import get_logger
from ..process.launcher import ProcessHandle, Stream
from .events import StatusSink

logger = get_logger(__name__)


class OutputReader:
    """Drains a process's output for the rest of its life.

    Every line is forwarded to the sink as a log entry. Lines containing one
    of ``error_markers`` are also published as errors. EOF (including a
    broken pipe after the process is killed) ends the reader normally.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        sink: StatusSink,
        error_markers: Sequence[str] = (),
        poll_interval: float = 0.1,
    ):
        self.handle = handle
        self._sink = sink
        self._error_markers = list(error_markers)
        self._poll_interval = poll_interval
        self._cancelled = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> "OutputReader":
        for stream in self.handle.streams:
            thread = threading.Thread(
                target=self._run,
                args=(stream,),
                name=f"{self.handle.name}-{stream}-reader",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _run(self, stream: Stream) -> None:
        name = self.handle.name
        while not self._cancelled.is_set():
            try:
                line = self.handle.read_line(timeout=self._poll_interval, stream=stream)
            except EOFError:
                break
            if line is None:
                continue
            if line.strip():
                logger.debug("Live output", name=name, line=line)
            self._sink.publish_log(name, line)
            for marker in self._error_markers:
                if marker in line:
                    self._sink.publish_error(f"{name} reported an error", line)
                    break

        if not self._cancelled.is_set() and not self.handle.is_alive():
            logger.warning("Process output ended, process died", name=name, exit_code=self.handle.exit_code)
