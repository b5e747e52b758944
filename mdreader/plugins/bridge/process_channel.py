"""Subprocess channel: plugin executable over stdin/stdout pipes."""

from __future__ import annotations

import asyncio
import os

from loguru import logger

from mdreader.plugins.core.contracts import DataCallback, ExitCallback, StderrCallback
from mdreader.utils.exceptions import SpawnError

_READ_CHUNK = 64 * 1024
_STDOUT_DRAIN_SECONDS = 1.0


class ProcessChannel:
    """Spawns the plugin binary and pumps its stdout/stderr into callbacks."""

    def __init__(
        self,
        binary: str,
        args: list[str] | tuple[str, ...] = (),
        *,
        plugin_id: str = "unknown",
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ):
        self.binary = binary
        self.args = list(args)
        self.plugin_id = plugin_id
        self.env = env
        self.cwd = cwd
        self._proc: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._exited = asyncio.Event()

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def spawn(
        self,
        on_data: DataCallback,
        on_exit: ExitCallback,
        on_stderr: StderrCallback | None = None,
    ) -> None:
        if self.is_running():
            return
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        self._exited = asyncio.Event()
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.binary,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.cwd,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(self.plugin_id, self.binary, str(exc)) from exc
        logger.debug("[{}] spawned {} (pid {})", self.plugin_id, self.binary, self._proc.pid)
        reader = asyncio.create_task(self._stdout_loop(on_data))
        self._tasks = [
            reader,
            asyncio.create_task(self._stderr_loop(on_stderr)),
            asyncio.create_task(self._watch_exit(reader, on_exit)),
        ]

    async def _stdout_loop(self, on_data: DataCallback) -> None:
        proc = self._proc
        if not proc or not proc.stdout:
            return
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                return
            on_data(chunk)

    async def _stderr_loop(self, on_stderr: StderrCallback | None) -> None:
        proc = self._proc
        if not proc or not proc.stderr:
            return
        while True:
            raw = await proc.stderr.readline()
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace").strip()
            if text and on_stderr is not None:
                on_stderr(text)

    async def _watch_exit(self, reader: asyncio.Task[None], on_exit: ExitCallback) -> None:
        proc = self._proc
        if proc is None:
            return
        code = await proc.wait()
        # Deliver responses written right before exit ahead of the exit notification.
        await asyncio.wait([reader], timeout=_STDOUT_DRAIN_SECONDS)
        self._exited.set()
        on_exit(code)
        # A grandchild holding the pipes open would keep the readers alive.
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

    def write_nowait(self, line: str) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None or proc.stdin.is_closing() or proc.returncode is not None:
            raise ConnectionResetError("plugin stdin is closed")
        proc.stdin.write((line + "\n").encode("utf-8"))

    async def write(self, line: str) -> None:
        self.write_nowait(line)
        assert self._proc is not None and self._proc.stdin is not None
        await self._proc.stdin.drain()

    def kill(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def wait(self) -> int | None:
        if self._proc is None:
            return None
        await self._exited.wait()
        return self._proc.returncode
