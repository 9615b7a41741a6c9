"""Tests for ProcessLauncher and ProcessHandle."""

import subprocess
from unittest.mock import patch

import pytest

from slipstream_wrapper.common.exceptions import SpawnError
from slipstream_wrapper.process.launcher import ProcessHandle, ProcessLauncher


class TestProcessLauncher:
    """Spawning with a mocked Popen."""

    @patch("subprocess.Popen")
    def test_launch_wires_streams(self, mock_popen, mock_process):
        mock_popen.return_value = mock_process

        handle = ProcessLauncher().launch(["/opt/bin/slipstream-client", "--domain=t.example.com"])

        args, kwargs = mock_popen.call_args
        assert args[0] == ["/opt/bin/slipstream-client", "--domain=t.example.com"]
        assert kwargs["stdin"] == subprocess.DEVNULL
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stderr"] == subprocess.STDOUT
        assert kwargs["text"] is True
        assert kwargs["env"] is None
        assert handle.name == "slipstream-client"
        assert handle.pid == 12345
        assert handle.is_alive()

    @patch("subprocess.Popen")
    def test_launch_separate_stderr(self, mock_popen, mock_process):
        mock_popen.return_value = mock_process

        ProcessLauncher().launch(["ssh"], merge_stderr=False, name="socks")

        assert mock_popen.call_args.kwargs["stderr"] == subprocess.PIPE

    @patch("subprocess.Popen")
    def test_launch_layers_environment(self, mock_popen, mock_process, monkeypatch):
        monkeypatch.setenv("HOME", "/home/tunnel")
        mock_popen.return_value = mock_process

        ProcessLauncher().launch(["ssh"], env={"LANG": "C"})

        env = mock_popen.call_args.kwargs["env"]
        assert env["LANG"] == "C"
        assert env["HOME"] == "/home/tunnel"

    @patch("subprocess.Popen")
    def test_os_error_becomes_spawn_error(self, mock_popen):
        mock_popen.side_effect = PermissionError(13, "Permission denied")

        with pytest.raises(SpawnError, match="Failed to start slipstream-client") as exc_info:
            ProcessLauncher().launch(["/data/slipstream-client"])

        assert isinstance(exc_info.value.os_error, PermissionError)

    def test_empty_command_rejected(self):
        with pytest.raises(SpawnError, match="empty"):
            ProcessLauncher().launch([])


class TestProcessHandle:
    """Handle behaviour over a mocked process."""

    def test_read_line_then_eof(self, mock_process):
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.read_line(timeout=1.0) == "line one"
        assert handle.read_line(timeout=1.0) == "line two"
        with pytest.raises(EOFError):
            handle.read_line(timeout=1.0)
        with pytest.raises(EOFError):
            handle.read_line(timeout=1.0)

    def test_missing_stream_is_eof(self, mock_process):
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.streams == ["stdout"]
        with pytest.raises(EOFError):
            handle.read_line(timeout=0.1, stream="stderr")

    def test_exit_code_from_poll(self, mock_process):
        handle = ProcessHandle(mock_process, ["x"], "x")
        assert handle.exit_code is None

        mock_process.poll.return_value = 2

        assert handle.exit_code == 2
        assert not handle.is_alive()

    def test_wait_timeout_returns_none(self, mock_process):
        mock_process.wait.side_effect = subprocess.TimeoutExpired("x", 0.1)
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.wait(timeout=0.1) is None

    def test_kill_graceful(self, mock_process):
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.kill(grace=1.0) is True

        mock_process.terminate.assert_called_once()
        mock_process.kill.assert_not_called()
        assert handle.killed_at is not None

    def test_kill_escalates_to_sigkill(self, mock_process):
        mock_process.wait.side_effect = [subprocess.TimeoutExpired("x", 1.0), -9]
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.kill(grace=1.0, force_timeout=0.5) is True

        mock_process.terminate.assert_called_once()
        mock_process.kill.assert_called_once()

    def test_kill_reports_survivor(self, mock_process):
        mock_process.wait.side_effect = subprocess.TimeoutExpired("x", 1.0)
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.kill(grace=0.1, force_timeout=0.1) is False

    def test_kill_already_dead_is_noop(self, mock_process):
        mock_process.poll.return_value = 0
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.kill() is True
        mock_process.terminate.assert_not_called()

    def test_kill_races_with_exit(self, mock_process):
        mock_process.terminate.side_effect = ProcessLookupError()
        handle = ProcessHandle(mock_process, ["x"], "x")

        assert handle.kill() is True


class TestRealProcesses:
    """Launching small script stubs."""

    def test_output_and_exit_code(self, make_stub):
        stub = make_stub("talker", 'print("hello", flush=True)\nsys.exit(3)')

        handle = ProcessLauncher().launch([str(stub)])

        assert handle.read_line(timeout=5.0) == "hello"
        assert handle.wait(timeout=5.0) == 3
        assert not handle.is_alive()

    def test_stderr_is_merged(self, make_stub):
        stub = make_stub("complainer", 'print("oops", file=sys.stderr, flush=True)')

        handle = ProcessLauncher().launch([str(stub)])

        assert handle.read_line(timeout=5.0) == "oops"

    def test_kill_long_running(self, make_stub):
        stub = make_stub("sleeper", "time.sleep(30)")
        handle = ProcessLauncher().launch([str(stub)])

        assert handle.kill(grace=2.0) is True
        assert not handle.is_alive()
        assert handle.exit_code == -15

    def test_kill_escalates_for_sigterm_ignoring_process(self, make_stub):
        stub = make_stub(
            "stubborn",
            "import signal\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            'print("ready", flush=True)\n'
            "time.sleep(30)",
        )
        handle = ProcessLauncher().launch([str(stub)])
        assert handle.read_line(timeout=5.0) == "ready"

        assert handle.kill(grace=0.2, force_timeout=2.0) is True
        assert handle.exit_code == -9

    def test_missing_binary(self, tmp_path):
        with pytest.raises(SpawnError):
            ProcessLauncher().launch([str(tmp_path / "does-not-exist")])
