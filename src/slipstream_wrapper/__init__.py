"""Slipstream wrapper - supervisor for a two-stage SOCKS5 tunnel."""

from .common.exceptions import (
    ConfigRejected,
    ProcessCrashed,
    ProvisionError,
    ReadinessTimeout,
    SlipstreamWrapperError,
    SpawnError,
    SupervisorError,
)
from .common.logging import get_logger, setup_logging
from .config import SupervisorSettings
from .process import (
    BinaryProvisioner,
    Confirmed,
    ProcessExited,
    ProcessHandle,
    ProcessLauncher,
    ReadinessResult,
    TimedOut,
    await_ready,
)
from .supervisor import (
    ErrorEvent,
    HealthMonitor,
    LogEntry,
    StageState,
    StageStatus,
    StatusEvent,
    StatusSink,
    StatusSnapshot,
    SupervisorState,
    TunnelSupervisor,
)
from .tunnel import TunnelConfiguration, parse_configuration

# Setup logging on package initialization
setup_logging()

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Supervisor
    "TunnelSupervisor",
    "SupervisorSettings",
    "HealthMonitor",
    "StatusSink",
    # Configuration
    "TunnelConfiguration",
    "parse_configuration",
    # Processes
    "ProcessLauncher",
    "ProcessHandle",
    "BinaryProvisioner",
    "await_ready",
    "ReadinessResult",
    "Confirmed",
    "TimedOut",
    "ProcessExited",
    # Status
    "SupervisorState",
    "StageState",
    "StageStatus",
    "StatusEvent",
    "StatusSnapshot",
    "LogEntry",
    "ErrorEvent",
    # Exceptions
    "SlipstreamWrapperError",
    "SupervisorError",
    "ConfigRejected",
    "ProvisionError",
    "SpawnError",
    "ReadinessTimeout",
    "ProcessCrashed",
    # Logging
    "get_logger",
    "setup_logging",
]
