"""Centralized logging for spadev (buffering, routing, and CLI formatting)."""

from __future__ import annotations

import logging
import time
from collections import deque
from enum import Enum
from typing import Any, ClassVar, TypeAlias

from pydantic import BaseModel, ConfigDict
from rich.text import Text
from typing_extensions import override

from spadev.models import LogChannel, LogEntry
from spadev.utils import console

LogBuffer: TypeAlias = deque[LogEntry]


class DevLogComponent(str, Enum):
    """Where a log originated (used for fine-grained filtering)."""

    SERVER = "server"
    SERVER_UVICORN = "server_uvicorn"
    UI = "ui"
    MIDDLEWARE = "middleware"
    PROXY = "proxy"
    PROCESS_CONTROL = "process_control"


_COMPONENT_DEFAULT_CHANNEL: dict[DevLogComponent, LogChannel] = {
    DevLogComponent.SERVER: LogChannel.SPADEV,
    DevLogComponent.SERVER_UVICORN: LogChannel.SPADEV,
    DevLogComponent.MIDDLEWARE: LogChannel.SPADEV,
    DevLogComponent.PROXY: LogChannel.SPADEV,
    DevLogComponent.PROCESS_CONTROL: LogChannel.SPADEV,
    DevLogComponent.UI: LogChannel.UI,
}


class _DevLogState(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(arbitrary_types_allowed=True)

    buffer: LogBuffer | None = None
    console_output: bool = True
    configured: bool = False


_STATE = _DevLogState()


def _now_timestamp(created: float | None = None) -> str:
    t = time.localtime(created if created is not None else time.time())
    return time.strftime("%Y-%m-%d %H:%M:%S", t)


def _emit_entry(
    *,
    channel: LogChannel,
    component: DevLogComponent,
    level: str,
    content: str,
    created: float | None = None,
) -> None:
    entry = LogEntry(
        timestamp=_now_timestamp(created),
        level=level,
        channel=channel,
        component=component.value,
        content=content,
    )
    if _STATE.buffer is not None:
        _STATE.buffer.append(entry)
    if _STATE.console_output:
        print_log_entry(entry)


class _DevLogHandler(logging.Handler):
    log_component: DevLogComponent
    log_channel: LogChannel

    def __init__(self, *, channel: LogChannel, component: DevLogComponent):
        super().__init__()
        self.log_channel = channel
        self.log_component = component

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            _emit_entry(
                channel=self.log_channel,
                component=self.log_component,
                level=record.levelname,
                content=self.format(record),
                created=record.created,
            )
        except Exception:
            self.handleError(record)


def _logger_name(component: DevLogComponent) -> str:
    return f"spadev.dev.{component.value}"


def configure_dev_logging(
    *, buffer: LogBuffer | None = None, console_output: bool = True
) -> None:
    """Route all dev loggers to the console and, optionally, an in-memory buffer."""
    _STATE.buffer = buffer
    _STATE.console_output = console_output

    for component in DevLogComponent:
        channel = _COMPONENT_DEFAULT_CHANNEL.get(component, LogChannel.SPADEV)
        logger = logging.getLogger(_logger_name(component))
        logger.setLevel(logging.INFO)
        logger.handlers.clear()
        handler = _DevLogHandler(channel=channel, component=component)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    # The host server's own logs go next to ours, under the [spadev] prefix.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.setLevel(logging.INFO)
        uv.handlers.clear()
        h = _DevLogHandler(
            channel=LogChannel.SPADEV, component=DevLogComponent.SERVER_UVICORN
        )
        h.setFormatter(logging.Formatter("%(message)s"))
        uv.addHandler(h)
        uv.propagate = False

    _STATE.configured = True


def get_logger(component: DevLogComponent) -> logging.Logger:
    """Get a dev logger for a component (do not call stdlib logging directly)."""
    logger = logging.getLogger(_logger_name(component))
    if not _STATE.configured:
        # Avoid "No handlers could be found" warnings in contexts that don't configure dev logging.
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
    return logger


def print_log_entry(entry: LogEntry | dict[str, Any]) -> None:  # pyright: ignore[reportExplicitAny]
    """Print a single log entry with `[spadev]`/`[ui]` prefixes."""
    if isinstance(entry, dict):
        entry = LogEntry.model_validate(entry)

    prefix_style = "bright_blue" if entry.channel == LogChannel.SPADEV else "cyan"
    content_style = "red" if entry.level in ("ERROR", "CRITICAL") else None

    ts = Text(entry.timestamp, style="dim")
    sep = Text(" | ")
    prefix = Text(f"[{entry.channel.value}]", style=prefix_style)
    content = Text(entry.content, style=content_style or "")
    console.print(ts + sep + prefix + sep + content)
