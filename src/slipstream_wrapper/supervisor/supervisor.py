"""Tunnel supervisor: serialized start/stop of the two tunnel stages.

Stage 1 is the slipstream tunnel client; it must print its readiness marker
before stage 2 (the SSH dynamic forward exposing the SOCKS5 listener) is
started on top of it. ``apply`` and ``stop`` run under one lock, shutdown
order is always stage 2 then stage 1, and a health monitor re-runs the whole
sequence when either stage dies.
"""

import threading
import time
from collections.abc import Callable, Mapping, Sequence
from types import TracebackType
from typing import Any, Literal

from ..common.exceptions import (
    ConfigRejected,
    ProcessCrashed,
    ProvisionError,
    ReadinessTimeout,
    SpawnError,
    SupervisorError,
)
from ..common.logging import get_logger
from ..common.utils import mask_path
from ..config import SupervisorSettings
from ..process.cleanup import kill_residual
from ..process.launcher import ProcessHandle, ProcessLauncher
from ..process.provisioner import BinaryProvisioner
from ..process.readiness import ProcessExited, ReadinessResult, TimedOut, await_ready
from ..tunnel.commands import build_stage1_command, build_stage2_command
from ..tunnel.models import TunnelConfiguration, parse_configuration
from .events import StatusSink
from .monitor import HealthMonitor
from .reader import OutputReader
from .state import StageStatus, StatusEvent, StatusSnapshot, SupervisorState

logger = get_logger(__name__)

ResidualCleaner = Callable[[Sequence[str], Sequence[str], float], Any]


class TunnelSupervisor:
    """Owns both stage processes and every transition between states."""

    def __init__(
        self,
        settings: SupervisorSettings | None = None,
        sink: StatusSink | None = None,
        launcher: ProcessLauncher | None = None,
        provisioner: BinaryProvisioner | None = None,
        cleaner: ResidualCleaner | None = None,
    ):
        """Initialize the supervisor.

        Args:
            settings: Binaries, timeouts and restart policy
            sink: Where status, log and error events are published
            launcher: Process launcher (replaceable in tests)
            provisioner: Binary provisioner (replaceable in tests)
            cleaner: Residual process killer, ``kill_residual`` by default
        """
        self.settings = settings or SupervisorSettings()
        self.sink = sink or StatusSink()
        self._launcher = launcher or ProcessLauncher()
        self._provisioner = provisioner or BinaryProvisioner(self.settings)
        self._cleaner = cleaner or kill_residual

        self._lock = threading.Lock()
        self._state = SupervisorState.IDLE
        self._config: TunnelConfiguration | None = None
        self._stage1: ProcessHandle | None = None
        self._stage2: ProcessHandle | None = None
        self._readers: list[OutputReader] = []
        self._monitor: HealthMonitor | None = None
        self._generation = 0
        self._consecutive_restarts = 0
        self._running_since: float | None = None
        self.last_error: SupervisorError | None = None

        logger.info(
            "TunnelSupervisor initialized",
            stage1=self.settings.stage1_binary,
            stage2=self.settings.stage2_binary,
        )

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def configuration(self) -> TunnelConfiguration | None:
        """Last applied configuration."""
        return self._config

    @property
    def restart_count(self) -> int:
        """Monitor-triggered restarts since the last apply, stop or stable run."""
        return self._consecutive_restarts

    # Public operations

    def apply(self, config: TunnelConfiguration | Mapping[str, Any]) -> StatusEvent:
        """Bring the tunnel up with ``config``.

        A no-op when ``config`` equals the running configuration and stage 1
        is alive. Otherwise tears down whatever runs and performs the full
        start sequence.

        Args:
            config: Configuration value or mapping of apply fields

        Returns:
            Terminal status: ``Running/Running`` or a failure

        Raises:
            ConfigRejected: If the configuration is malformed; nothing is touched
        """
        config = parse_configuration(config)
        if config.key_path is not None and not config.key_path.is_file():
            raise ConfigRejected(f"Key file not found: {mask_path(config.key_path)}")

        with self._lock:
            if config == self._config and self._stage1 is not None and self._stage1.is_alive():
                logger.info("Configuration unchanged and tunnel alive, nothing to do", domain=config.domain)
                return self.sink.last_status or self._event(StageStatus.running(), StageStatus.running())

            self._consecutive_restarts = 0
            return self._start_sequence(config)

    def stop(self) -> StatusEvent:
        """Stop both stages (stage 2 first) and return to idle.

        Returns:
            Final status, ``Stopped/Stopped`` unless a process refused to die
        """
        monitor = self._monitor
        if monitor is not None:
            monitor.cancel()

        with self._lock:
            self._generation += 1
            self._consecutive_restarts = 0
            self._running_since = None
            logger.info("Stopping tunnel", state=self._state.value)

            self._set_state(SupervisorState.STOPPING)
            self._publish(StageStatus.stopping(), StageStatus.stopping())
            self._cancel_background()

            stage2_stopped = self._kill(self._stage2)
            stage1_stopped = self._kill(self._stage1)
            self._stage1 = None
            self._stage2 = None

            if not (stage1_stopped and stage2_stopped):
                logger.error(
                    "One or more processes failed to stop",
                    stage1_stopped=stage1_stopped,
                    stage2_stopped=stage2_stopped,
                )

            self._set_state(SupervisorState.IDLE)
            return self._publish(
                StageStatus.stopped() if stage1_stopped else StageStatus.failed("Failed to stop"),
                StageStatus.stopped() if stage2_stopped else StageStatus.failed("Failed to stop"),
            )

    def query_status(self) -> StatusSnapshot:
        """Current status without taking the lock; liveness is queried live."""
        stage1 = self._stage1
        stage2 = self._stage2
        config = self._config
        last = self.sink.last_status
        error = self.last_error

        return StatusSnapshot(
            state=self._state,
            stage1=last.stage1 if last else StageStatus.stopped(),
            stage2=last.stage2 if last else StageStatus.stopped(),
            stage1_alive=stage1 is not None and stage1.is_alive(),
            stage2_alive=stage2 is not None and stage2.is_alive(),
            stage1_pid=stage1.pid if stage1 is not None else None,
            stage2_pid=stage2.pid if stage2 is not None else None,
            domain=config.domain if config else None,
            local_port=config.local_port if config else None,
            last_error=str(error) if error else None,
        )

    def request_status(self) -> StatusEvent:
        """Publish a liveness-derived status so late observers catch up."""
        stage1 = self._stage1
        stage2 = self._stage2
        stage1_alive = stage1 is not None and stage1.is_alive()
        stage2_alive = stage2 is not None and stage2.is_alive()
        event = self._event(
            StageStatus.running() if stage1_alive else StageStatus.stopped(),
            StageStatus.running() if stage2_alive else StageStatus.stopped(),
        )
        self.sink.publish(event)
        return event

    def close(self) -> None:
        """Stop the tunnel and shut down the sink dispatcher."""
        try:
            self.stop()
        finally:
            self.sink.close()

    def __enter__(self) -> "TunnelSupervisor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        try:
            self.close()
        except Exception as e:
            logger.error("Error during context exit", error=str(e))
        return False

    # Start sequence; every method below expects the lock to be held

    def _start_sequence(self, config: TunnelConfiguration) -> StatusEvent:
        self._generation += 1
        generation = self._generation
        self._config = config
        self._running_since = None
        self.last_error = None
        logger.info("Applying configuration", generation=generation, **config.summary())

        try:
            return self._run_sequence(config, generation)
        except Exception as e:
            logger.exception("Unexpected error during start sequence", generation=generation)
            error = e if isinstance(e, SupervisorError) else SupervisorError(f"Unexpected start failure: {e}")
            self._fail(error, "Tunnel Error", str(e))
            return self._failed_event()

    def _run_sequence(self, config: TunnelConfiguration, generation: int) -> StatusEvent:
        self._set_state(SupervisorState.CLEANING_UP)
        self._publish(StageStatus.stopping(), StageStatus.stopping())
        self._cancel_background()
        self._kill(self._stage2)
        self._kill(self._stage1)
        self._stage1 = None
        self._stage2 = None
        if self.settings.cleanup_residual:
            self._cleaner(
                self.settings.residual_names,
                self.settings.privileged_prefix,
                self.settings.cleanup_timeout,
            )

        stage1 = self._start_stage1(config)
        if stage1 is None:
            return self._failed_event()

        stage2 = self._start_stage2(config, stage1)
        if stage2 is None:
            return self._failed_event()

        self._set_state(SupervisorState.RUNNING)
        self._running_since = time.monotonic()
        event = self._publish(StageStatus.running(), StageStatus.running())
        self._monitor = HealthMonitor(
            stage1,
            stage2,
            self.settings.monitor_interval,
            self._restart_after_failure,
            self.sink,
            generation,
        ).start()
        logger.info("Tunnel started successfully", local_port=config.local_port, generation=generation)
        return event

    def _start_stage1(self, config: TunnelConfiguration) -> ProcessHandle | None:
        settings = self.settings
        self._set_state(SupervisorState.STARTING_STAGE1)
        self._publish(StageStatus.starting("Starting tunnel..."), StageStatus.waiting())

        try:
            binary = self._provisioner.ensure(settings.stage1_binary)
            handle = self._launcher.launch(
                build_stage1_command(binary, config), name=settings.stage1_binary, merge_stderr=True
            )
        except ProvisionError as e:
            return self._fail_stage1(e, "Binary Error", str(e))
        except SpawnError as e:
            return self._fail_stage1(e, "Tunnel Start Error", str(e))

        self._stage1 = handle
        result = await_ready(
            handle,
            settings.stage1_timeout,
            settings.success_marker,
            poll_interval=settings.readiness_poll_interval,
            exit_settle=settings.exit_settle,
            on_line=lambda line: self.sink.publish_log(handle.name, line),
        )
        if not result.confirmed:
            output = self._teardown_after(result, handle)
            return self._fail_stage1(self._readiness_error(handle, result, output), "Tunnel Error", output)

        self._readers.append(
            OutputReader(
                handle, self.sink, settings.stage1_error_markers, settings.readiness_poll_interval
            ).start()
        )
        self._publish(StageStatus.running(), StageStatus.starting("Starting SSH..."))
        return handle

    def _start_stage2(self, config: TunnelConfiguration, stage1: ProcessHandle) -> ProcessHandle | None:
        settings = self.settings
        self._set_state(SupervisorState.STARTING_STAGE2)
        if settings.stage2_start_delay > 0:
            time.sleep(settings.stage2_start_delay)

        if not stage1.is_alive():
            output = "\n".join(stage1.drain())
            error = ProcessCrashed(
                f"{stage1.name} exited before stage 2 started", exit_code=stage1.exit_code, output=output
            )
            return self._fail_stage2(error, "Tunnel Error", output)

        try:
            if config.key_path is not None:
                self._provisioner.fix_key_permissions(config.key_path)
            binary = self._provisioner.ensure(settings.stage2_binary)
            handle = self._launcher.launch(
                build_stage2_command(binary, config, settings), name=settings.stage2_binary, merge_stderr=True
            )
        except ProvisionError as e:
            return self._fail_stage2(e, "Binary Error", str(e))
        except SpawnError as e:
            return self._fail_stage2(e, "SSH Start Error", str(e))

        self._stage2 = handle
        result = await_ready(
            handle,
            settings.stage2_timeout,
            settings.stage2_marker,
            poll_interval=settings.readiness_poll_interval,
            exit_settle=settings.exit_settle,
            on_line=lambda line: self.sink.publish_log(handle.name, line),
        )
        if not result.confirmed or not stage1.is_alive():
            output = self._teardown_after(result, handle)
            if result.confirmed:
                error: SupervisorError = ProcessCrashed(
                    f"{stage1.name} died while {handle.name} was starting", exit_code=stage1.exit_code
                )
            else:
                error = self._readiness_error(handle, result, output)
            return self._fail_stage2(error, "SSH Start Error", f"Output:\n{output}")

        self._readers.append(
            OutputReader(handle, self.sink, poll_interval=settings.readiness_poll_interval).start()
        )
        return handle

    def _teardown_after(self, result: ReadinessResult, handle: ProcessHandle) -> str:
        """Kill ``handle`` and return its captured output plus any unread tail."""
        self._kill(handle)
        lines = [result.output] if result.output else []
        lines.extend(handle.drain())
        return "\n".join(lines)

    def _readiness_error(self, handle: ProcessHandle, result: ReadinessResult, output: str) -> SupervisorError:
        if isinstance(result, TimedOut):
            return ReadinessTimeout(f"{handle.name} did not confirm readiness in time", output=output)
        exit_code = result.exit_code if isinstance(result, ProcessExited) else handle.exit_code
        return ProcessCrashed(f"{handle.name} exited during startup (exit code {exit_code})", exit_code, output)

    def _fail_stage1(self, error: SupervisorError, title: str, detail: str) -> None:
        self._fail(error, title, detail)
        self._publish(StageStatus.failed(str(error)), StageStatus.stopped())

    def _fail_stage2(self, error: SupervisorError, title: str, detail: str) -> None:
        self._fail(error, title, detail)
        self._publish(StageStatus.stopped(), StageStatus.failed(str(error)))

    def _fail(self, error: SupervisorError, title: str, detail: str) -> None:
        """Tear down both stages (a half-open tunnel is never left running)."""
        logger.error("Tunnel start failed", error=str(error), error_type=type(error).__name__)
        self.last_error = error
        self._cancel_background()
        self._kill(self._stage2)
        self._kill(self._stage1)
        self._stage1 = None
        self._stage2 = None
        self._set_state(SupervisorState.FAILED)
        self.sink.publish_error(title, detail)

    def _failed_event(self) -> StatusEvent:
        last = self.sink.last_status
        if last is not None and last.state is SupervisorState.FAILED:
            return last
        return self._publish(StageStatus.failed(str(self.last_error)), StageStatus.stopped())

    # Monitor-triggered recovery

    def _restart_after_failure(self, generation: int, detail: str) -> None:
        """Re-run the start sequence with the last configuration.

        Runs on the monitor thread and takes the same lock as ``apply`` and
        ``stop``. A restart whose generation is stale (a later apply or stop
        already ran) or whose monitor was cancelled is dropped. A pair that
        stayed up for ``restart_reset_after`` seconds counts as recovered, so
        its failure starts a fresh series of restarts.
        """
        running_since = self._running_since
        stable = (
            running_since is not None
            and time.monotonic() - running_since >= self.settings.restart_reset_after
        )
        attempt = 1 if stable else self._consecutive_restarts + 1
        delay = self.settings.restart_delay(attempt)
        monitor = self._monitor
        if delay > 0 and monitor is not None and monitor.generation == generation:
            logger.info("Delaying restart", attempt=attempt, delay=delay)
            if monitor.wait(delay):
                return

        with self._lock:
            monitor = self._monitor
            if generation != self._generation or self._config is None:
                logger.info("Dropping stale restart request", generation=generation, current=self._generation)
                return
            if monitor is not None and monitor.cancelled:
                logger.info("Dropping restart request from cancelled monitor", generation=generation)
                return
            if stable and self._consecutive_restarts:
                logger.info("Tunnel was stable, resetting restart counter", previous=self._consecutive_restarts)
                self._consecutive_restarts = 0

            limit = self.settings.max_consecutive_restarts
            if limit is not None and self._consecutive_restarts >= limit:
                error = ProcessCrashed(f"Restart limit of {limit} reached: {detail}")
                self._fail(error, "Restart Limit Reached", detail)
                self._publish(StageStatus.failed(str(error)), StageStatus.failed(str(error)))
                return

            self._consecutive_restarts += 1
            logger.warning("Restarting tunnel after failure", attempt=self._consecutive_restarts, detail=detail)
            self._start_sequence(self._config)

    # Helpers

    def _cancel_background(self) -> None:
        # The monitor is never joined here: it may be waiting on this lock.
        if self._monitor is not None:
            self._monitor.cancel()
            self._monitor = None
        for reader in self._readers:
            reader.cancel()
        for reader in self._readers:
            reader.join(timeout=self.settings.readiness_poll_interval * 5)
        self._readers = []

    def _kill(self, handle: ProcessHandle | None) -> bool:
        if handle is None:
            return True
        return handle.kill(grace=self.settings.kill_grace, force_timeout=self.settings.kill_force_timeout)

    def _set_state(self, state: SupervisorState) -> None:
        if state is not self._state:
            logger.debug("State transition", old=self._state.value, new=state.value)
        self._state = state

    def _event(self, stage1: StageStatus, stage2: StageStatus) -> StatusEvent:
        return StatusEvent(stage1=stage1, stage2=stage2, state=self._state)

    def _publish(self, stage1: StageStatus, stage2: StageStatus) -> StatusEvent:
        event = self._event(stage1, stage2)
        self.sink.publish(event)
        return event
