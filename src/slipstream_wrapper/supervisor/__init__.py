"""Tunnel supervision: state machine, health monitor and status sink."""

from .events import SinkEvent, StatusSink, Subscriber
from .monitor import HealthMonitor
from .reader import OutputReader
from .state import (
    ErrorEvent,
    LogEntry,
    StageState,
    StageStatus,
    StatusEvent,
    StatusSnapshot,
    SupervisorState,
)
from .supervisor import TunnelSupervisor

__all__ = [
    "TunnelSupervisor",
    "HealthMonitor",
    "OutputReader",
    "StatusSink",
    "SinkEvent",
    "Subscriber",
    "SupervisorState",
    "StageState",
    "StageStatus",
    "StatusEvent",
    "StatusSnapshot",
    "LogEntry",
    "ErrorEvent",
]
