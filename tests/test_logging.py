"""Tests for dev log routing."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator

import pytest

from spadev.dev import logging as dev_logging
from spadev.dev.logging import (
    DevLogComponent,
    configure_dev_logging,
    get_logger,
    print_log_entry,
)
from spadev.models import LogChannel, LogEntry
from spadev.utils import console

_LOGGER_NAMES = [f"spadev.dev.{c.value}" for c in DevLogComponent] + [
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
]


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    saved_state = dev_logging._STATE.model_copy()
    saved = {
        name: (
            list(logging.getLogger(name).handlers),
            logging.getLogger(name).propagate,
            logging.getLogger(name).level,
        )
        for name in _LOGGER_NAMES
    }
    try:
        yield
    finally:
        for name, (handlers, propagate, level) in saved.items():
            logger = logging.getLogger(name)
            logger.handlers[:] = handlers
            logger.propagate = propagate
            logger.setLevel(level)
        dev_logging._STATE.buffer = saved_state.buffer
        dev_logging._STATE.console_output = saved_state.console_output
        dev_logging._STATE.configured = saved_state.configured


def test_entries_are_buffered_by_channel() -> None:
    buffer: deque[LogEntry] = deque(maxlen=10)
    configure_dev_logging(buffer=buffer, console_output=False)

    get_logger(DevLogComponent.SERVER).info("Starting dev server on port 5123...")
    get_logger(DevLogComponent.UI).error("Error: Cannot find module 'vue'")
    logging.getLogger("uvicorn.error").info("Application startup complete.")

    assert [(e.channel, e.component, e.level, e.content) for e in buffer] == [
        (LogChannel.SPADEV, "server", "INFO", "Starting dev server on port 5123..."),
        (LogChannel.UI, "ui", "ERROR", "Error: Cannot find module 'vue'"),
        (LogChannel.SPADEV, "server_uvicorn", "INFO", "Application startup complete."),
    ]


def test_debug_is_filtered() -> None:
    buffer: deque[LogEntry] = deque()
    configure_dev_logging(buffer=buffer, console_output=False)

    get_logger(DevLogComponent.PROCESS_CONTROL).debug("killpg failed")

    assert len(buffer) == 0


def test_unconfigured_logger_propagates(caplog: pytest.LogCaptureFixture) -> None:
    dev_logging._STATE.configured = False
    logger = logging.getLogger("spadev.dev.middleware")
    logger.handlers.clear()
    logger.propagate = True

    with caplog.at_level(logging.WARNING, logger="spadev.dev.middleware"):
        get_logger(DevLogComponent.MIDDLEWARE).warning("GET /: timed out")

    assert any(isinstance(h, logging.NullHandler) for h in logger.handlers)
    assert "GET /: timed out" in caplog.text


def test_print_log_entry_prefixes_channel() -> None:
    with console.capture() as capture:
        print_log_entry(
            {
                "timestamp": "2024-01-01 12:00:00",
                "level": "INFO",
                "channel": "ui",
                "component": "ui",
                "content": "App running at: http://localhost:5123/",
            }
        )

    assert capture.get().strip() == (
        "2024-01-01 12:00:00 | [ui] | App running at: http://localhost:5123/"
    )
