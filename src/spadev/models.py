"""Centralized Pydantic models and enums for spadev."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from spadev.constants import (
    DEFAULT_HOST,
    DEFAULT_PACKAGE_MANAGER,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SCRIPT_NAME,
    DEFAULT_STARTUP_TIMEOUT,
    DEV_SERVER_PORT_END,
    DEV_SERVER_PORT_START,
    HOST_URL_ENV_VAR,
    READINESS_MARKER,
)


# === Enums ===


class LogChannel(str, Enum):
    """Logical log channel for dev logging."""

    SPADEV = "spadev"
    UI = "ui"


# === Base Models (Building Blocks) ===


class TrackedProcess(BaseModel):
    """A process we started and are allowed to manage.

    create_time protects against PID reuse. pgid enables POSIX process-group shutdown
    even if the original PID has already exited (common with npm -> node handoff).
    """

    pid: int | None = None
    create_time: float | None = None
    pgid: int | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class PortRange(BaseModel):
    """Inclusive port range scanned for the dev server."""

    start: int = DEV_SERVER_PORT_START
    end: int = DEV_SERVER_PORT_END


class DevServerConfig(BaseModel):
    """Complete configuration for the dev server attachment.

    This is the single source of truth for all dev server configuration.
    All default values are defined here and should not be repeated elsewhere.
    """

    source_path: str
    script_name: str = DEFAULT_SCRIPT_NAME
    extra_args: list[str] = Field(default_factory=list)
    package_manager: str = DEFAULT_PACKAGE_MANAGER
    host: str = DEFAULT_HOST
    host_url: str | None = Field(
        default=None,
        description="Externally reachable address of the host app, exported to the child.",
    )
    host_url_env_var: str = HOST_URL_ENV_VAR
    readiness_marker: str = READINESS_MARKER
    startup_timeout: float = Field(default=DEFAULT_STARTUP_TIMEOUT, gt=0)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    port_range: PortRange = Field(default_factory=PortRange)


class StartupResult(BaseModel):
    """Where the dev server ended up listening."""

    port: int
    uri: str
    process: TrackedProcess | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @classmethod
    def for_port(
        cls, port: int, *, process: TrackedProcess | None = None
    ) -> StartupResult:
        return cls(port=port, uri=f"http://localhost:{port}", process=process)


class LogEntry(BaseModel):
    """Strongly typed log entry model for buffered logs."""

    timestamp: str
    level: str
    channel: LogChannel
    component: str
    content: str
