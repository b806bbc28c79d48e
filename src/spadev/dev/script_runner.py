"""Runs a `package.json` script (`npm run <script>`) and publishes its output.

The child is started in its own process group/session so the whole tree
(npm -> node -> dev server) can be stopped together, and its stdout/stderr
are exposed as `EventedStreamReader`s that any number of consumers can
subscribe to.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

from spadev.dev.process_control import stop_tracked_process, track_process
from spadev.dev.streams import EventedStreamReader
from spadev.errors import InvalidConfigurationError, LaunchFailureError
from spadev.models import TrackedProcess
from spadev.utils import strip_ansi_colors

__all__ = [
    "ScriptLauncher",
    "ScriptRunner",
]


@dataclass(frozen=True)
class ScriptLauncher:
    """How to invoke the package runner on a given platform.

    Attributes:
        wrapper: Command prepended to the package runner invocation
        creationflags: Windows process creation flags
        start_new_session: Start the child in a new POSIX session
    """

    wrapper: tuple[str, ...] = ()
    creationflags: int = 0
    start_new_session: bool = False


# On Windows the package runner is a .cmd file, which can't be executed
# directly while capturing stdio, so it goes through "cmd /c".
_LAUNCHERS: dict[str, ScriptLauncher] = {
    "win32": ScriptLauncher(
        wrapper=("cmd", "/c"),
        creationflags=getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0),
    ),
}
_DEFAULT_LAUNCHER = ScriptLauncher(start_new_session=True)


def launcher_for_platform(platform: str | None = None) -> ScriptLauncher:
    """Return the launcher policy for `platform` (defaults to sys.platform)."""
    return _LAUNCHERS.get(platform or sys.platform, _DEFAULT_LAUNCHER)


class ScriptRunner:
    """Executes a script entry defined in a `package.json` file, capturing stdio.

    Example:
        runner = ScriptRunner("./ClientApp", "serve", ["--port", "5000"], {})
        await runner.start()
        runner.attach_to_logger(logger)
        await runner.stdout.wait_for_match("DONE", timeout=60)
    """

    def __init__(
        self,
        working_directory: str | Path,
        script_name: str,
        arguments: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
        *,
        package_manager: str | Sequence[str] = "npm",
        launcher: ScriptLauncher | None = None,
    ) -> None:
        if not str(working_directory or ""):
            raise InvalidConfigurationError("working_directory")
        if not script_name:
            raise InvalidConfigurationError("script_name")

        self.working_directory: Path = Path(working_directory)
        self.script_name: str = script_name
        self.arguments: list[str] = list(arguments or [])
        self.env: dict[str, str] = dict(env or {})
        self.package_manager: list[str] = (
            [package_manager]
            if isinstance(package_manager, str)
            else list(package_manager)
        )
        self.launcher: ScriptLauncher = launcher or launcher_for_platform()

        self._process: asyncio.subprocess.Process | None = None
        self._stdout: EventedStreamReader | None = None
        self._stderr: EventedStreamReader | None = None
        self._tracked: TrackedProcess | None = None

    @property
    def argv(self) -> list[str]:
        """The full command line, including the platform wrapper."""
        return [
            *self.launcher.wrapper,
            *self.package_manager,
            "run",
            self.script_name,
            "--",
            *self.arguments,
        ]

    @property
    def stdout(self) -> EventedStreamReader:
        if self._stdout is None:
            raise RuntimeError("The script has not been started yet.")
        return self._stdout

    @property
    def stderr(self) -> EventedStreamReader:
        if self._stderr is None:
            raise RuntimeError("The script has not been started yet.")
        return self._stderr

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def tracked(self) -> TrackedProcess | None:
        """pid/create_time/pgid recorded right after launch."""
        return self._tracked

    async def start(self) -> None:
        """Launch the script. Can only be called once.

        Raises:
            LaunchFailureError: The package runner could not be executed
        """
        if self._process is not None:
            raise RuntimeError(f"Script '{self.script_name}' was already started.")

        env = {**os.environ, **self.env}
        kwargs: dict[str, Any] = {}
        if self.launcher.start_new_session:
            kwargs["start_new_session"] = True
        if self.launcher.creationflags:
            kwargs["creationflags"] = self.launcher.creationflags

        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                cwd=self.working_directory,
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs,
            )
        except OSError as e:
            executable = self.package_manager[0]
            raise LaunchFailureError(
                f"Failed to start '{executable}'. To resolve this:\n\n"
                f"[1] Ensure that '{executable}' is installed and can be found in one of the PATH directories.\n"
                f"    Current PATH environment variable is: {os.environ.get('PATH', '')}\n"
                "    Make sure the executable is in one of those directories, or update your PATH.\n\n"
                f"[2] Check that the working directory '{self.working_directory}' exists.\n\n"
                f"[3] Underlying error: {e}"
            ) from e

        self._process = process
        # Record metadata immediately: npm may hand off to node and exit quickly.
        self._tracked = track_process(process.pid)

        assert process.stdout is not None and process.stderr is not None
        self._stdout = EventedStreamReader(process.stdout, name=f"{self.script_name} stdout")
        self._stderr = EventedStreamReader(process.stderr, name=f"{self.script_name} stderr")

    def attach_to_logger(
        self, logger: logging.Logger, passthrough: TextIO | None = None
    ) -> None:
        """Forward the script's output to `logger`.

        Complete stdout lines are logged at INFO and complete stderr lines at
        ERROR, with ANSI colors stripped. Stderr chunks without a newline are
        assumed to be progress information and are written as-is to
        `passthrough` (sys.stdout by default) regardless of logger config. Bytes
        go to the passthrough's binary buffer when it has one; otherwise they
        are decoded incrementally so characters split across reads survive.
        """

        def log_stdout(line: str) -> None:
            if line.strip():
                logger.info(strip_ansi_colors(line))

        def log_stderr(line: str) -> None:
            if line.strip():
                logger.error(strip_ansi_colors(line))

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        def forward_progress(chunk: bytes) -> None:
            if b"\n" in chunk:
                return
            out = passthrough if passthrough is not None else sys.stdout
            raw = getattr(out, "buffer", None)
            if raw is not None:
                out.flush()
                raw.write(chunk)
                raw.flush()
                return
            out.write(decoder.decode(chunk))
            out.flush()

        self.stdout.on_line(log_stdout)
        self.stderr.on_line(log_stderr)
        self.stderr.on_chunk(forward_progress)

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        if self._process is None:
            raise RuntimeError("The script has not been started yet.")
        return await self._process.wait()

    async def stop(self) -> None:
        """Stop the script and every process it spawned."""
        if self._process is None or self._process.returncode is not None:
            return
        tp = self._tracked or track_process(self._process.pid)
        if tp is not None:
            await asyncio.to_thread(stop_tracked_process, tp, name=self.script_name)
        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
        await self._process.wait()
