"""Runtime settings for the tunnel supervisor."""

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common.exceptions import ConfigRejected
from .common.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BIN_DIR = Path.home() / ".local" / "share" / "slipstream-wrapper" / "bin"
SUCCESS_MARKER = "Connection confirmed."


class SupervisorSettings(BaseModel):
    """Pydantic settings for binaries, timeouts and restart policy."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    # Binaries
    stage1_binary: str = Field(default="slipstream-client", min_length=1, description="Tunnel client binary name")
    stage2_binary: str = Field(default="ssh", min_length=1, description="Forwarding client binary name")
    assets_dir: Path | None = Field(default=None, description="Directory holding bundled binaries")
    bin_dir: Path = Field(default=DEFAULT_BIN_DIR, description="Writable, executable directory for binaries")
    always_copy: bool = Field(default=False, description="Re-copy bundled binaries on every provision")
    privileged_prefix: list[str] = Field(
        default_factory=list, description="Command prefix for privileged fallbacks, e.g. ['su', '-c']"
    )

    # Stage 1
    success_marker: str = Field(default=SUCCESS_MARKER, min_length=1, description="Stage 1 readiness marker")
    stage1_timeout: float = Field(default=3.0, ge=0.1, le=120.0, description="Stage 1 readiness deadline")
    stage1_error_markers: list[str] = Field(
        default_factory=list, description="Substrings in late stage 1 output reported as errors"
    )

    # Stage 2
    stage2_start_delay: float = Field(default=1.0, ge=0.0, le=30.0, description="Pause between stage 1 and stage 2")
    stage2_timeout: float = Field(default=1.0, ge=0.1, le=120.0, description="Stage 2 readiness deadline or settle window")
    stage2_marker: str | None = Field(default=None, description="Optional stage 2 readiness marker")
    stage2_privileged: bool = Field(default=False, description="Run stage 2 through privileged_prefix")
    ssh_user: str = Field(default="root", min_length=1)
    ssh_host: str = Field(default="127.0.0.1", min_length=1)
    ssh_extra_args: list[str] = Field(default_factory=list)

    # Lifecycle
    monitor_interval: float = Field(default=1.0, ge=0.05, le=60.0, description="Health monitor tick")
    kill_grace: float = Field(default=1.0, ge=0.0, le=30.0, description="Wait after SIGTERM before SIGKILL")
    kill_force_timeout: float = Field(default=0.5, ge=0.0, le=30.0, description="Wait after SIGKILL")
    cleanup_residual: bool = Field(default=True, description="killall leftover binaries before starting")
    residual_process_names: list[str] | None = Field(
        default=None, description="Names killed during cleanup (defaults to the stage 1 binary)"
    )
    cleanup_timeout: float = Field(default=1.0, ge=0.1, le=10.0)
    readiness_poll_interval: float = Field(default=0.1, ge=0.01, le=1.0)
    exit_settle: float = Field(
        default=0.5, ge=0.0, le=10.0, description="Wait for an exit status once a process closes its output"
    )

    # Restart policy
    restart_backoff: float = Field(default=0.0, ge=0.0, le=300.0, description="First restart delay, 0 restarts immediately")
    restart_backoff_max: float = Field(default=30.0, ge=0.0, le=3600.0)
    max_consecutive_restarts: int | None = Field(default=None, ge=1, description="None restarts forever")
    restart_reset_after: float = Field(
        default=60.0, gt=0.0, le=86400.0, description="Healthy run time after which the restart counter resets"
    )

    @field_validator("assets_dir", "bin_dir")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        """Expand ``~`` in directory settings."""
        return v.expanduser() if v is not None else v

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "SupervisorSettings":
        if self.restart_backoff > self.restart_backoff_max:
            raise ValueError("restart_backoff cannot exceed restart_backoff_max")
        return self

    @property
    def residual_names(self) -> list[str]:
        """Process names killed during the cleanup step."""
        if self.residual_process_names is None:
            return [self.stage1_binary]
        return list(self.residual_process_names)

    def restart_delay(self, attempt: int) -> float:
        """Delay before the ``attempt``-th consecutive restart (1-based)."""
        if self.restart_backoff <= 0 or attempt <= 0:
            return 0.0
        return min(self.restart_backoff * (2 ** (attempt - 1)), self.restart_backoff_max)

    @classmethod
    def from_toml(cls, path: str | Path) -> "SupervisorSettings":
        """Load settings from the ``[supervisor]`` table of a TOML file.

        A file without that table is read as a flat settings table; a
        ``[tunnel]`` table is ignored here.

        Raises:
            ConfigRejected: If the file cannot be parsed or validated
        """
        path = Path(path)
        try:
            with path.open("rb") as f:
                data: dict[str, Any] = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigRejected(f"Cannot read settings file {path}: {e}") from e

        if "supervisor" in data:
            table = data["supervisor"]
        else:
            table = {key: value for key, value in data.items() if key != "tunnel"}
        try:
            settings = cls.model_validate(table)
        except ValueError as e:
            raise ConfigRejected(f"Invalid settings in {path}", errors=[str(e)]) from e

        logger.debug("Settings loaded", path=str(path))
        return settings
