"""Dev server startup: spawn once, share the outcome with every request.

`start_dev_server` picks a port, launches the package script with it and
waits for the readiness marker on stdout. `DevServerStartup` memoizes that
coroutine: the first caller starts it, everybody else awaits the same task,
each under their own timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from spadev.constants import DEV_SERVER_PORT_ENV_VAR
from spadev.dev.logging import DevLogComponent, get_logger
from spadev.dev.ports import find_available_port
from spadev.dev.process_control import stop_tracked_process
from spadev.dev.script_runner import ScriptRunner
from spadev.dev.streams import EventedStreamStringReader
from spadev.errors import (
    EndOfStreamError,
    InvalidConfigurationError,
    LaunchFailureError,
    MatchTimeoutError,
    ProcessExitedEarlyError,
    ReadinessTimeoutError,
    RequestTimeoutError,
)
from spadev.models import DevServerConfig, PortRange, StartupResult
from spadev.utils import format_elapsed_ms

__all__ = [
    "DevServerStartup",
    "start_dev_server",
    "validate_config",
]

PortFinder = Callable[[PortRange], int | None]
# Called with the host app address seen by the first request, if any.
StartupFactory = Callable[[str | None], Awaitable[StartupResult]]

# How long to let stderr drain after stdout closed, for the error message.
STDERR_DRAIN_TIMEOUT = 5.0


def validate_config(config: DevServerConfig) -> None:
    """Reject configurations that can never start a dev server."""
    if not config.source_path:
        raise InvalidConfigurationError("source_path")
    if not config.script_name:
        raise InvalidConfigurationError("script_name")


async def start_dev_server(
    config: DevServerConfig,
    *,
    logger: logging.Logger | None = None,
    port_finder: PortFinder | None = None,
    runner_factory: Callable[..., ScriptRunner] | None = None,
) -> StartupResult:
    """Start the dev server and wait until it says it is listening.

    Args:
        config: Dev server configuration
        logger: Where the script's output goes (defaults to the UI logger)
        port_finder: Black-box free-port lookup (defaults to find_available_port)
        runner_factory: Builds the ScriptRunner (tests substitute the package runner)

    Returns:
        The port and URI the dev server listens on

    Raises:
        LaunchFailureError: No free port, or the script could not be launched
        ProcessExitedEarlyError: stdout closed before the readiness marker appeared
        ReadinessTimeoutError: The marker did not appear within config.startup_timeout
    """
    server_logger = get_logger(DevLogComponent.SERVER)
    output_logger = logger or get_logger(DevLogComponent.UI)
    started = time.perf_counter()

    port = (port_finder or find_available_port)(config.port_range)
    if port is None:
        raise LaunchFailureError(
            f"No available port for the dev server in range "
            f"{config.port_range.start}-{config.port_range.end}."
        )
    server_logger.info(f"Starting dev server on port {port}...")

    # Lets the dev server's own config (vite.config.js, vue.config.js, ...)
    # proxy API calls back to the host app.
    env = {
        config.host_url_env_var: config.host_url or "",
        DEV_SERVER_PORT_ENV_VAR: str(port),
    }
    runner = (runner_factory or ScriptRunner)(
        config.source_path,
        config.script_name,
        ["--port", str(port), "--host", config.host, *config.extra_args],
        env,
        package_manager=config.package_manager,
    )
    await runner.start()
    runner.attach_to_logger(output_logger)

    with EventedStreamStringReader(runner.stderr) as stderr_capture:
        try:
            await runner.stdout.wait_for_match(
                config.readiness_marker, timeout=config.startup_timeout
            )
        except EndOfStreamError as e:
            # stdout and stderr are read independently; let stderr catch up.
            await runner.stderr.wait_closed(timeout=STDERR_DRAIN_TIMEOUT)
            stderr = stderr_capture.read_as_string()
            raise ProcessExitedEarlyError(
                f"The script '{config.script_name}' exited without indicating that the "
                f"dev server was listening for requests. The error output was: {stderr}",
                script_name=config.script_name,
                stderr=stderr,
            ) from e
        except MatchTimeoutError as e:
            stderr = stderr_capture.read_as_string()
            await runner.stop()
            raise ReadinessTimeoutError(
                f"The script '{config.script_name}' did not indicate that the dev "
                f"server was listening for requests within {config.startup_timeout:g} "
                f"seconds. The error output was: {stderr}",
                script_name=config.script_name,
                stderr=stderr,
            ) from e
        except asyncio.CancelledError:
            await runner.stop()
            raise

    result = StartupResult.for_port(port, process=runner.tracked)
    server_logger.info(
        f"Dev server is listening on {result.uri} ({format_elapsed_ms(started)})"
    )
    return result


class DevServerStartup:
    """Write-once cell holding the dev server startup task.

    The task is created on the first `start()` or `wait()` call and never
    again, so one attachment spawns at most one process. A failed startup is
    sticky: every later `wait()` raises the same error.
    """

    def __init__(self, factory: StartupFactory) -> None:
        self._factory: StartupFactory = factory
        self._task: asyncio.Task[StartupResult] | None = None
        self._logger: logging.Logger = get_logger(DevLogComponent.SERVER)

    @classmethod
    def from_config(
        cls, config: DevServerConfig, *, logger: logging.Logger | None = None
    ) -> DevServerStartup:
        validate_config(config)

        def factory(host_url: str | None) -> Awaitable[StartupResult]:
            # An explicitly configured address wins over the one requests see.
            if config.host_url is None and host_url is not None:
                return start_dev_server(
                    config.model_copy(update={"host_url": host_url}), logger=logger
                )
            return start_dev_server(config, logger=logger)

        return cls(factory)

    def start(self, host_url: str | None = None) -> asyncio.Task[StartupResult]:
        """Start the startup task unless it already exists, and return it.

        `host_url` is the host app address handed to the factory; it only
        matters for the call that actually starts the task.
        """
        if self._task is None:
            self._task = asyncio.ensure_future(self._factory(host_url))
            self._task.add_done_callback(self._log_outcome)
        return self._task

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(
        self, timeout: float | None = None, *, host_url: str | None = None
    ) -> StartupResult:
        """Wait for the dev server, giving up after `timeout` seconds.

        Giving up only affects this caller; the startup keeps running.

        Raises:
            RequestTimeoutError: The timeout elapsed before startup finished
            DevServerError: Startup itself failed
        """
        task = self.start(host_url)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(timeout or 0.0) from e

    async def aclose(self) -> None:
        """Cancel a pending startup, or stop the dev server it started."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            return
        if self._task.cancelled() or self._task.exception() is not None:
            return
        tracked = self._task.result().process
        if tracked is not None:
            await asyncio.to_thread(stop_tracked_process, tracked, name="dev server")

    def _log_outcome(self, task: asyncio.Task[StartupResult]) -> None:
        # Also marks the exception as retrieved when no request is waiting.
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(f"Dev server failed to start: {exc}")
