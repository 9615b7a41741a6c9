"""Output-based readiness confirmation for launched processes."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..common.logging import get_logger
from .launcher import ProcessHandle

logger = get_logger(__name__)

# Default wait for the exit status once the output stream closes.
EXIT_SETTLE = 0.5


@dataclass(frozen=True)
class ReadinessResult:
    """Base for the three readiness outcomes."""

    output: str = ""

    @property
    def confirmed(self) -> bool:
        return False


@dataclass(frozen=True)
class Confirmed(ReadinessResult):
    """The success marker was seen, or the process survived its settle window."""

    @property
    def confirmed(self) -> bool:
        return True


@dataclass(frozen=True)
class TimedOut(ReadinessResult):
    """The deadline elapsed before the marker appeared."""


@dataclass(frozen=True)
class ProcessExited(ReadinessResult):
    """The stream closed or the process died before confirming."""

    exit_code: int | None = field(default=None)


def await_ready(
    handle: ProcessHandle,
    timeout: float,
    success_marker: str | None = None,
    poll_interval: float = 0.1,
    on_line: Callable[[str], None] | None = None,
    exit_settle: float = EXIT_SETTLE,
) -> ReadinessResult:
    """Wait for a process to prove it is ready.

    With a ``success_marker`` the process's stdout is consumed line by line
    until a line contains the marker (``Confirmed``), the deadline passes
    (``TimedOut``) or the stream closes / the process dies
    (``ProcessExited``). Lines not consumed before the deadline stay queued in
    the handle for the caller to drain.

    Without a marker the call waits ``timeout`` seconds as a settle window
    and reports ``Confirmed`` if the process is still alive.

    Args:
        handle: Process to watch
        timeout: Deadline in seconds (settle window when no marker is given)
        success_marker: Substring that confirms readiness
        poll_interval: Longest single blocking read
        on_line: Called with each consumed line
        exit_settle: How long to wait for the exit status and output tail
            of a process that stopped before confirming

    Returns:
        The readiness outcome with the captured output
    """
    captured: list[str] = []

    def consume(line: str) -> None:
        captured.append(line)
        if on_line is not None:
            on_line(line)

    if success_marker is None:
        return _await_settle(handle, timeout, captured, consume, exit_settle)

    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning(
                "Readiness deadline elapsed", name=handle.name, pid=handle.pid, timeout=timeout
            )
            return TimedOut(output="\n".join(captured))

        try:
            line = handle.read_line(timeout=min(remaining, poll_interval))
        except EOFError:
            exit_code = handle.wait(timeout=exit_settle)
            logger.warning("Process output closed before readiness", name=handle.name, exit_code=exit_code)
            return ProcessExited(output="\n".join(captured), exit_code=exit_code)

        if line is None:
            if not handle.is_alive():
                _collect_tail(handle, consume, exit_settle)
                logger.warning("Process exited before readiness", name=handle.name, exit_code=handle.exit_code)
                return ProcessExited(output="\n".join(captured), exit_code=handle.exit_code)
            continue

        consume(line)
        if line.strip():
            logger.debug("Startup output", name=handle.name, line=line)
        if success_marker in line:
            logger.info("Readiness marker found", name=handle.name, pid=handle.pid)
            return Confirmed(output="\n".join(captured))


def _await_settle(
    handle: ProcessHandle,
    settle: float,
    captured: list[str],
    consume: Callable[[str], None],
    exit_settle: float,
) -> ReadinessResult:
    exit_code = handle.wait(timeout=settle)
    if exit_code is None and handle.is_alive():
        for line in handle.drain():
            consume(line)
        logger.info("Process alive after settle window", name=handle.name, pid=handle.pid)
        return Confirmed(output="\n".join(captured))

    _collect_tail(handle, consume, exit_settle)
    logger.warning("Process exited during settle window", name=handle.name, exit_code=handle.exit_code)
    return ProcessExited(output="\n".join(captured), exit_code=handle.exit_code)


def _collect_tail(handle: ProcessHandle, consume: Callable[[str], None], exit_settle: float) -> None:
    """Read what a dead process left in its pipe, bounded by ``exit_settle``."""
    deadline = time.monotonic() + exit_settle
    while time.monotonic() < deadline:
        try:
            line = handle.read_line(timeout=0.05)
        except EOFError:
            return
        if line is not None:
            consume(line)
