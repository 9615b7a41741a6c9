"""Launching, provisioning and readiness of external processes."""

from .cleanup import kill_residual
from .launcher import ProcessHandle, ProcessLauncher
from .provisioner import BinaryProvisioner
from .readiness import (
    Confirmed,
    ProcessExited,
    ReadinessResult,
    TimedOut,
    await_ready,
)

__all__ = [
    "ProcessHandle",
    "ProcessLauncher",
    "BinaryProvisioner",
    "kill_residual",
    "await_ready",
    "ReadinessResult",
    "Confirmed",
    "TimedOut",
    "ProcessExited",
]
