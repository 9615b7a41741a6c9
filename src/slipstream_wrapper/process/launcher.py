"""Process launching and ownership of child processes."""

import os
import queue
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import IO, Literal

from ..common.exceptions import SpawnError
from ..common.logging import get_logger

logger = get_logger(__name__)

Stream = Literal["stdout", "stderr"]

_EOF = object()


class _LinePump:
    """Daemon thread copying one text stream into a queue line by line."""

    def __init__(self, stream: IO[str], name: str):
        self._stream = stream
        self.lines: queue.Queue[object] = queue.Queue()
        self.closed = False
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            for line in iter(self._stream.readline, ""):
                self.lines.put(line.rstrip("\r\n"))
        except (OSError, ValueError):
            # Pipe closed underneath us while killing the process.
            pass
        finally:
            self.lines.put(_EOF)
            try:
                self._stream.close()
            except OSError:
                pass

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)


class ProcessHandle:
    """Owns exactly one child process and its output streams.

    Liveness is always queried from the OS, never cached. Output is read
    from in-memory queues filled by pump threads, so reading never blocks
    the child and lines are kept until someone consumes them.
    """

    def __init__(self, process: "subprocess.Popen[str]", argv: Sequence[str], name: str):
        self._process = process
        self.argv = list(argv)
        self.name = name
        self.started_at = time.monotonic()
        self.killed_at: float | None = None
        self._pumps: dict[str, _LinePump] = {}
        if process.stdout is not None:
            self._pumps["stdout"] = _LinePump(process.stdout, f"{name}-stdout")
        if process.stderr is not None:
            self._pumps["stderr"] = _LinePump(process.stderr, f"{name}-stderr")

    def __repr__(self) -> str:
        return f"ProcessHandle(name={self.name!r}, pid={self.pid}, alive={self.is_alive()})"

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def exit_code(self) -> int | None:
        """Exit code if the process has exited, else None."""
        return self._process.poll()

    @property
    def streams(self) -> list[str]:
        return list(self._pumps)

    def is_alive(self) -> bool:
        """Check if the process is currently running"""
        return self._process.poll() is None

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for exit; returns the exit code or None on timeout."""
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def read_line(self, timeout: float, stream: Stream = "stdout") -> str | None:
        """Read one output line.

        Args:
            timeout: Seconds to wait for a line
            stream: Which stream to read

        Returns:
            The line without its newline, or None if nothing arrived in time

        Raises:
            EOFError: Once the stream is closed and fully consumed
        """
        pump = self._pumps.get(stream)
        if pump is None or pump.closed:
            raise EOFError(f"{self.name} {stream} is closed")
        try:
            item = pump.lines.get(timeout=max(timeout, 0.0))
        except queue.Empty:
            return None
        if item is _EOF:
            pump.closed = True
            raise EOFError(f"{self.name} {stream} is closed")
        return item  # type: ignore[return-value]

    def drain(self, stream: Stream = "stdout") -> list[str]:
        """Collect every buffered line without waiting."""
        pump = self._pumps.get(stream)
        lines: list[str] = []
        if pump is None or pump.closed:
            return lines
        while True:
            try:
                item = pump.lines.get_nowait()
            except queue.Empty:
                return lines
            if item is _EOF:
                pump.closed = True
                return lines
            lines.append(item)  # type: ignore[arg-type]

    def kill(self, grace: float = 1.0, force_timeout: float = 0.5) -> bool:
        """Terminate gracefully, then force.

        Args:
            grace: Seconds to wait after SIGTERM
            force_timeout: Seconds to wait after SIGKILL

        Returns:
            True if the process is gone afterwards
        """
        if not self.is_alive():
            self.killed_at = self.killed_at or time.monotonic()
            return True

        logger.info("Stopping process", name=self.name, pid=self.pid)
        self.killed_at = time.monotonic()
        try:
            self._process.terminate()
            try:
                self._process.wait(timeout=grace)
                logger.info("Process terminated gracefully", name=self.name, pid=self.pid)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Process did not terminate gracefully, force killing",
                    name=self.name,
                    pid=self.pid,
                )
                self._process.kill()
                try:
                    self._process.wait(timeout=force_timeout)
                except subprocess.TimeoutExpired:
                    logger.error("Process failed to terminate forcibly", name=self.name, pid=self.pid)
                    return False
        except ProcessLookupError:
            # Exited between the liveness check and the signal.
            pass
        except OSError as e:
            logger.error("Error stopping process", name=self.name, error=str(e))
            return not self.is_alive()

        for pump in self._pumps.values():
            pump.join(timeout=0.2)
        return True


class ProcessLauncher:
    """Spawns child processes and hands back owning ``ProcessHandle``s."""

    def launch(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
        work_dir: str | Path | None = None,
        merge_stderr: bool = True,
        name: str | None = None,
    ) -> ProcessHandle:
        """Start one child process.

        Args:
            argv: Program and arguments
            env: Extra environment variables layered over the current one
            work_dir: Working directory for the child
            merge_stderr: Fold stderr into stdout
            name: Label used in logs (defaults to the program name)

        Returns:
            Handle owning the new process

        Raises:
            SpawnError: If the OS refuses to start the process
        """
        if not argv:
            raise SpawnError("Cannot launch an empty command")

        label = name or Path(argv[0]).name
        child_env = None
        if env is not None:
            child_env = dict(os.environ)
            child_env.update(env)

        logger.info("Starting process", name=label, argv=list(argv))
        try:
            process = subprocess.Popen(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                env=child_env,
                cwd=str(work_dir) if work_dir is not None else None,
                text=True,
                bufsize=1,
                errors="replace",
            )
        except OSError as e:
            logger.error("Failed to start process", name=label, error=str(e))
            raise SpawnError(f"Failed to start {label}: {e}", os_error=e) from e

        logger.info("Process started", name=label, pid=process.pid)
        return ProcessHandle(process, argv, label)
