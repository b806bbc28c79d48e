"""Shared fixtures: a fake package runner standing in for npm."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from spadev.dev.script_runner import ScriptRunner

FAKE_NPM: Path = Path(__file__).parent / "fixtures" / "fake_npm.py"
FAKE_PACKAGE_MANAGER: list[str] = [sys.executable, str(FAKE_NPM)]


class FakeRunners:
    """ScriptRunner factory that runs fake_npm.py and remembers what it built."""

    def __init__(self) -> None:
        self.runners: list[ScriptRunner] = []

    def __call__(self, *args: Any, **kwargs: Any) -> ScriptRunner:
        kwargs["package_manager"] = FAKE_PACKAGE_MANAGER
        runner = ScriptRunner(*args, **kwargs)
        self.runners.append(runner)
        return runner

    async def stop_all(self) -> None:
        for runner in self.runners:
            if runner.pid is not None:
                await runner.stop()


@pytest_asyncio.fixture
async def fake_runners() -> AsyncIterator[FakeRunners]:
    runners = FakeRunners()
    try:
        yield runners
    finally:
        await runners.stop_all()


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A front-end project directory."""
    (tmp_path / "package.json").write_text('{"scripts": {"serve": "vue-cli-service serve"}}')
    return tmp_path


@pytest.fixture
def fake_package_manager() -> list[str]:
    """Command that stands in for `npm` when building a ScriptRunner directly."""
    return list(FAKE_PACKAGE_MANAGER)
