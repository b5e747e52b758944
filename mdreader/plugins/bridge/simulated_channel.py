"""In-process stand-in for a plugin binary, used when no process can be spawned."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from loguru import logger

from mdreader.plugins.core.contracts import DataCallback, ExitCallback, StderrCallback
from mdreader.plugins.core.protocol import INIT_ID, SHUTDOWN_ACTION, PluginResponse
from mdreader.plugins.core.serialization import decode_request_line, encode_response_line

SIMULATED_VERSION = "0.1.0"
DEFAULT_SIMULATED_DELAY_SECONDS = 0.05

Handler = Callable[[dict[str, Any]], Any]


def _ping(_: dict[str, Any]) -> dict[str, Any]:
    return {"pong": True}


def _capabilities(_: dict[str, Any]) -> dict[str, Any]:
    return {
        "actions": ["ping", "analyze", "deep_analyze", "report", "browse", "shutdown"],
        "version": SIMULATED_VERSION,
        "features": {"tui": True, "gui": False},
    }


def _browse(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "path": payload.get("path") or ".",
        "entries": [
            {"name": "example.md", "path": "./example.md", "type": "file"},
            {"name": "docs", "path": "./docs", "type": "directory"},
        ],
    }


def _analyze(payload: dict[str, Any]) -> dict[str, Any]:
    files = payload.get("files")
    files = [str(f) for f in files] if isinstance(files, list) else []
    return {
        "files_analyzed": len(files),
        "analyses": [
            {"path": f, "size": 1024, "file_type": "md", "permissions": "644", "is_binary": False}
            for f in files
        ],
    }


SIMULATED_HANDLERS: dict[str, Handler] = {
    "ping": _ping,
    "get_capabilities": _capabilities,
    "browse": _browse,
    "analyze": _analyze,
}


class SimulatedChannel:
    """Speaks the plugin wire protocol from a fixed table of canned handlers."""

    def __init__(
        self,
        plugin_id: str = "unknown",
        *,
        delay: float = DEFAULT_SIMULATED_DELAY_SECONDS,
        handlers: dict[str, Handler] | None = None,
    ):
        self.plugin_id = plugin_id
        self.delay = delay
        self.handlers = dict(SIMULATED_HANDLERS if handlers is None else handlers)
        self._on_data: DataCallback | None = None
        self._on_exit: ExitCallback | None = None
        self._running = False
        self._timers: set[asyncio.TimerHandle] = set()
        self._exited = asyncio.Event()
        self._exit_code: int | None = None

    async def spawn(
        self,
        on_data: DataCallback,
        on_exit: ExitCallback,
        on_stderr: StderrCallback | None = None,
    ) -> None:
        if self._running:
            return
        logger.warning("[{}] Running in simulated mode", self.plugin_id)
        self._on_data = on_data
        self._on_exit = on_exit
        self._running = True
        self._exited = asyncio.Event()
        self._exit_code = None
        ready = PluginResponse(
            id=INIT_ID,
            success=True,
            data={"status": "ready", "version": SIMULATED_VERSION, "capabilities": sorted(self.handlers)},
        )
        asyncio.get_running_loop().call_soon(self._emit, ready)

    def write_nowait(self, line: str) -> None:
        if not self._running:
            raise ConnectionResetError("simulated channel is closed")
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _fire() -> None:
            if handle is not None:
                self._timers.discard(handle)
            self._respond(line)

        handle = loop.call_later(self.delay, _fire)
        self._timers.add(handle)

    async def write(self, line: str) -> None:
        self.write_nowait(line)

    def _respond(self, line: str) -> None:
        if not self._running:
            return
        try:
            request = decode_request_line(line)
        except ValueError as exc:
            self._emit(PluginResponse(id="unknown", success=False, error=f"Invalid message: {exc}"))
            return
        if request.action == SHUTDOWN_ACTION:
            self._emit(PluginResponse(id=request.id, success=True, data={"status": "shutting_down"}))
            asyncio.get_running_loop().call_soon(self._exit, 0)
            return
        handler = self.handlers.get(request.action)
        if handler is None:
            self._emit(PluginResponse(id=request.id, success=False, error=f"Unknown action: {request.action}"))
            return
        try:
            data = handler(request.payload)
        except Exception as exc:
            self._emit(PluginResponse(id=request.id, success=False, error=str(exc)))
            return
        self._emit(PluginResponse(id=request.id, success=True, data=data))

    def _emit(self, response: PluginResponse) -> None:
        if not self._running or self._on_data is None:
            return
        self._on_data((encode_response_line(response) + "\n").encode("utf-8"))

    def _exit(self, code: int | None) -> None:
        if not self._running:
            return
        self._running = False
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._exit_code = code
        self._exited.set()
        if self._on_exit is not None:
            self._on_exit(code)

    def kill(self) -> None:
        self._exit(None)

    def is_running(self) -> bool:
        return self._running

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self._exit_code
