"""Common utilities and shared functionality."""

from .exceptions import (
    ConfigRejected,
    ProcessCrashed,
    ProvisionError,
    ReadinessTimeout,
    SlipstreamWrapperError,
    SpawnError,
    SupervisorError,
)
from .logging import get_logger, setup_logging
from .utils import (
    DEFAULT_DNS_PORT,
    MAX_PORT,
    MIN_PORT,
    join_command,
    mask_path,
    normalize_resolver,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
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
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "normalize_resolver",
    "mask_path",
    "join_command",
    "DEFAULT_DNS_PORT",
    "MIN_PORT",
    "MAX_PORT",
]
