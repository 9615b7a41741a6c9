"""Shared pytest fixtures for slipstream wrapper tests."""

import io
import itertools
import queue
import sys
import threading
import time
from pathlib import Path
from unittest.mock import Mock

import pytest

from slipstream_wrapper.config import SupervisorSettings
from slipstream_wrapper.process.provisioner import BinaryProvisioner
from slipstream_wrapper.supervisor.events import StatusSink
from slipstream_wrapper.supervisor.state import ErrorEvent, LogEntry, StatusEvent

_EOF = object()
_pids = itertools.count(40000)


def wait_until(condition, timeout=3.0, interval=0.01):
    """Poll ``condition`` until it is truthy or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return bool(condition())


class FakeHandle:
    """In-memory stand-in for ProcessHandle driven by the test."""

    def __init__(self, name, lines=(), alive=True, exit_code=1, argv=None):
        self.name = name
        self.pid = next(_pids)
        self.argv = list(argv or [])
        self.streams = ["stdout"]
        self.started_at = time.monotonic()
        self.killed_at = None
        self._lines = queue.Queue()
        self._eof = False
        self._dead = threading.Event()
        self._exit_code = exit_code
        for line in lines:
            self._lines.put(line)
        if not alive:
            self.die(exit_code)

    def __repr__(self):
        return f"FakeHandle({self.name!r}, pid={self.pid}, alive={self.is_alive()})"

    def emit(self, line):
        self._lines.put(line)

    def die(self, exit_code=1):
        if not self._dead.is_set():
            self._exit_code = exit_code
            self._dead.set()
            self._lines.put(_EOF)

    def is_alive(self):
        return not self._dead.is_set()

    @property
    def exit_code(self):
        return self._exit_code if self._dead.is_set() else None

    def wait(self, timeout=None):
        if self._dead.wait(timeout):
            return self._exit_code
        return None

    def read_line(self, timeout, stream="stdout"):
        if self._eof:
            raise EOFError(self.name)
        try:
            item = self._lines.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _EOF:
            self._eof = True
            raise EOFError(self.name)
        return item

    def drain(self, stream="stdout"):
        lines = []
        while not self._eof:
            try:
                item = self._lines.get_nowait()
            except queue.Empty:
                break
            if item is _EOF:
                self._eof = True
                break
            lines.append(item)
        return lines

    def kill(self, grace=1.0, force_timeout=0.5):
        if self.is_alive():
            self.killed_at = time.monotonic()
            self.die(-15)
        return True


class FakeLauncher:
    """Records launches and returns FakeHandles built by per-name factories."""

    def __init__(self, factories):
        self._factories = factories
        self.launched = []
        self._lock = threading.Lock()

    def launch(self, argv, env=None, work_dir=None, merge_stderr=True, name=None):
        handle = self._factories[name](list(argv))
        with self._lock:
            self.launched.append(handle)
        return handle

    def by_name(self, name):
        with self._lock:
            return [handle for handle in self.launched if handle.name == name]

    @property
    def count(self):
        with self._lock:
            return len(self.launched)


class EventCollector:
    """Sink subscriber keeping every event it receives."""

    def __init__(self, sink):
        self.sink = sink
        self.events = []
        sink.subscribe(self.events.append)

    def statuses(self):
        self.sink.flush()
        return [event for event in self.events if isinstance(event, StatusEvent)]

    def logs(self):
        self.sink.flush()
        return [event for event in self.events if isinstance(event, LogEntry)]

    def errors(self):
        self.sink.flush()
        return [event for event in self.events if isinstance(event, ErrorEvent)]


@pytest.fixture
def fast_settings(tmp_path):
    """Settings with short timeouts and no residual killall."""
    return SupervisorSettings(
        assets_dir=tmp_path / "assets",
        bin_dir=tmp_path / "bin",
        stage1_timeout=0.5,
        stage2_start_delay=0.0,
        stage2_timeout=0.1,
        monitor_interval=0.05,
        kill_grace=0.5,
        kill_force_timeout=0.5,
        cleanup_residual=False,
        readiness_poll_interval=0.02,
    )


@pytest.fixture
def sink():
    status_sink = StatusSink()
    yield status_sink
    status_sink.close()


@pytest.fixture
def collector(sink):
    return EventCollector(sink)


@pytest.fixture
def mock_provisioner():
    provisioner = Mock(spec=BinaryProvisioner)
    provisioner.ensure.side_effect = lambda name: Path("/opt/fake") / name
    provisioner.fix_key_permissions.side_effect = lambda path: Path(path)
    return provisioner


@pytest.fixture
def healthy_launcher():
    """Stage 1 confirms at once, stage 2 stays alive."""
    return FakeLauncher(
        {
            "slipstream-client": lambda argv: FakeHandle(
                "slipstream-client", lines=["starting", "Connection confirmed."], argv=argv
            ),
            "ssh": lambda argv: FakeHandle("ssh", argv=argv),
        }
    )


@pytest.fixture
def mock_process():
    """Mock Popen result with readable in-memory streams.

    Returns:
        Mock: Mock process with common attributes
    """
    process = Mock()
    process.pid = 12345
    process.poll.return_value = None
    process.terminate.return_value = None
    process.kill.return_value = None
    process.wait.return_value = 0
    process.stdout = io.StringIO("line one\nline two\n")
    process.stderr = None
    return process


@pytest.fixture
def make_stub(tmp_path):
    """Write an executable Python script and return its path.

    The script body runs under the current interpreter so tests need
    nothing beyond Python itself.
    """

    def _make(name, body, directory=None):
        directory = Path(directory or tmp_path / "stubs")
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_text(f"#!{sys.executable}\nimport sys, time\n{body}\n")
        path.chmod(0o755)
        return path

    return _make
