"""Pytest hooks and fixtures."""

import asyncio
import json
import os
from pathlib import Path
from typing import Any

import pytest

ECHO_PLUGIN_DIR = Path(__file__).resolve().parents[1] / "examples" / "native-plugins" / "echo-plugin"


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "subprocess: spawns a real plugin process via the current interpreter",
    )


def pytest_collection_modifyitems(config, items):
    """Skip subprocess tests when the environment cannot spawn child processes."""
    if os.environ.get("MDREADER_NO_SUBPROCESS") != "true":
        return
    skip = pytest.mark.skip(reason="Subprocess spawning disabled (MDREADER_NO_SUBPROCESS)")
    for item in items:
        if "subprocess" in item.keywords:
            item.add_marker(skip)


class FakeChannel:
    """Scriptable PluginChannel: tests push frames in and inspect what was written."""

    def __init__(self, *, fail_spawn: Exception | None = None, fail_write: Exception | None = None):
        self.fail_spawn = fail_spawn
        self.fail_write = fail_write
        self.written: list[dict[str, Any]] = []
        self.killed = 0
        self.spawned = 0
        self._running = False
        self._on_data = None
        self._on_exit = None
        self._exit_code: int | None = None
        self._closed = None

    async def spawn(self, on_data, on_exit, on_stderr=None) -> None:
        if self.fail_spawn is not None:
            raise self.fail_spawn
        self.spawned += 1
        self._on_data = on_data
        self._on_exit = on_exit
        self._running = True
        self._closed = asyncio.Event()

    def write_nowait(self, line: str) -> None:
        if self.fail_write is not None:
            raise self.fail_write
        if not self._running:
            raise ConnectionResetError("closed")
        self.written.append(json.loads(line))

    async def write(self, line: str) -> None:
        self.write_nowait(line)

    def kill(self) -> None:
        self.killed += 1
        self.exit(None)

    def is_running(self) -> bool:
        return self._running

    async def wait(self) -> int | None:
        await self._closed.wait()
        return self._exit_code

    # test helpers

    def push(self, data: bytes | str) -> None:
        assert self._on_data is not None
        self._on_data(data.encode("utf-8") if isinstance(data, str) else data)

    def push_frame(self, frame: dict[str, Any]) -> None:
        self.push(json.dumps(frame) + "\n")

    def ready(self) -> None:
        self.push_frame({"id": "init", "success": True, "data": {"status": "ready"}})

    def exit(self, code: int | None = 0) -> None:
        if not self._running:
            return
        self._running = False
        self._exit_code = code
        self._closed.set()
        assert self._on_exit is not None
        self._on_exit(code)

    def requests(self, action: str | None = None) -> list[dict[str, Any]]:
        return [w for w in self.written if action is None or w.get("action") == action]


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def isolated_home(tmp_path, monkeypatch) -> Path:
    """Point ~ at a temp dir so discovery never sees the developer's own plugins."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home


@pytest.fixture
def echo_plugin_dir() -> Path:
    return ECHO_PLUGIN_DIR


@pytest.fixture
def channel_factory():
    return FakeChannel
