"""Supervisor states and the status values published to observers."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SupervisorState(str, Enum):
    """Lifecycle state of one tunnel supervisor."""

    IDLE = "idle"
    CLEANING_UP = "cleaning_up"
    STARTING_STAGE1 = "starting_stage1"
    STARTING_STAGE2 = "starting_stage2"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class StageState(str, Enum):
    """Status kind for a single stage."""

    STOPPED = "stopped"
    WAITING = "waiting"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class StageStatus(BaseModel):
    """Status of one stage, with a reason for starting/failed states."""

    model_config = ConfigDict(frozen=True)

    kind: StageState
    reason: str | None = None

    @classmethod
    def stopped(cls) -> "StageStatus":
        return cls(kind=StageState.STOPPED)

    @classmethod
    def waiting(cls) -> "StageStatus":
        return cls(kind=StageState.WAITING)

    @classmethod
    def starting(cls, reason: str) -> "StageStatus":
        return cls(kind=StageState.STARTING, reason=reason)

    @classmethod
    def running(cls) -> "StageStatus":
        return cls(kind=StageState.RUNNING)

    @classmethod
    def stopping(cls) -> "StageStatus":
        return cls(kind=StageState.STOPPING)

    @classmethod
    def failed(cls, reason: str) -> "StageStatus":
        return cls(kind=StageState.FAILED, reason=reason)

    def __str__(self) -> str:
        label = self.kind.value.capitalize()
        return f"{label}({self.reason})" if self.reason else label


class StatusEvent(BaseModel):
    """Pair of stage statuses published on every transition."""

    model_config = ConfigDict(frozen=True)

    stage1: StageStatus
    stage2: StageStatus
    state: SupervisorState
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        """True for outcomes an apply/stop call can end on."""
        return self.state in (SupervisorState.RUNNING, SupervisorState.FAILED, SupervisorState.IDLE)

    def __str__(self) -> str:
        return f"{self.stage1}/{self.stage2} [{self.state.value}]"


class LogEntry(BaseModel):
    """One raw output line from a stage, forwarded as an auxiliary entry."""

    model_config = ConfigDict(frozen=True)

    source: str
    line: str
    timestamp: datetime = Field(default_factory=datetime.now)


class ErrorEvent(BaseModel):
    """A diagnosable failure: short title plus captured output or detail."""

    model_config = ConfigDict(frozen=True)

    title: str
    detail: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)


class StatusSnapshot(BaseModel):
    """Answer to a status query, built without taking the supervisor lock."""

    model_config = ConfigDict(frozen=True)

    state: SupervisorState
    stage1: StageStatus
    stage2: StageStatus
    stage1_alive: bool = False
    stage2_alive: bool = False
    stage1_pid: int | None = None
    stage2_pid: int | None = None
    domain: str | None = None
    local_port: int | None = None
    last_error: str | None = None
