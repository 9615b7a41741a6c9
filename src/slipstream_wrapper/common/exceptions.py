"""Custom exceptions for slipstream wrapper."""


class SlipstreamWrapperError(Exception):
    """Base exception for all slipstream wrapper errors."""
    pass


class ConfigRejected(SlipstreamWrapperError):
    """Raised when a tunnel configuration is malformed."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class SupervisorError(SlipstreamWrapperError):
    """Base for failures recorded by the tunnel supervisor."""
    pass


class ProvisionError(SupervisorError):
    """Raised when a binary is missing or cannot be made executable."""
    pass


class SpawnError(SupervisorError):
    """Raised when the OS refuses to start a process."""

    def __init__(self, message: str, os_error: OSError | None = None):
        super().__init__(message)
        self.os_error = os_error


class ReadinessTimeout(SupervisorError):
    """Raised when a stage does not confirm readiness before its deadline."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class ProcessCrashed(SupervisorError):
    """Raised when a stage exits unexpectedly."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
