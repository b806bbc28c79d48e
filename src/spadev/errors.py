"""Exception hierarchy for spadev."""

from __future__ import annotations

__all__ = [
    "DevServerError",
    "InvalidConfigurationError",
    "LaunchFailureError",
    "StartupFailedError",
    "ReadinessTimeoutError",
    "ProcessExitedEarlyError",
    "RequestTimeoutError",
    "EndOfStreamError",
    "MatchTimeoutError",
    "MatchAlreadyPendingError",
]


class DevServerError(Exception):
    """Base class for all spadev errors."""


class InvalidConfigurationError(DevServerError, ValueError):
    """A required setting (working directory, script name, ...) is missing.

    Attributes:
        name: Name of the offending setting
    """

    def __init__(self, name: str, message: str = "Cannot be null or empty.") -> None:
        self.name = name
        super().__init__(f"{message} (Parameter '{name}')")


class LaunchFailureError(DevServerError):
    """The package runner could not be spawned (missing executable, OS error)."""


class StartupFailedError(DevServerError):
    """The dev server process started but never reported that it was listening.

    Attributes:
        script_name: Package script that was run
        stderr: Everything the process wrote to stderr before the failure
    """

    def __init__(self, message: str, *, script_name: str, stderr: str) -> None:
        self.script_name = script_name
        self.stderr = stderr
        super().__init__(message)


class ReadinessTimeoutError(StartupFailedError):
    """The readiness marker did not appear before the startup deadline."""


class ProcessExitedEarlyError(StartupFailedError):
    """stdout closed before the readiness marker appeared."""


class RequestTimeoutError(DevServerError):
    """A single request gave up waiting for the dev server to start.

    Attributes:
        timeout: The request-scoped timeout in seconds
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            "The dev server did not start listening for requests within the "
            f"timeout period of {timeout:g} seconds. "
            "Check the log output for error information."
        )


class EndOfStreamError(DevServerError, EOFError):
    """The stream ended while a match was still pending."""


class MatchTimeoutError(DevServerError, TimeoutError):
    """No match appeared on the stream before the deadline."""


class MatchAlreadyPendingError(DevServerError, RuntimeError):
    """wait_for_match was called while another wait is outstanding."""
