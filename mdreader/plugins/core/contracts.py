"""Runtime contracts for plugin channels and loader strategies."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from mdreader.plugins.instance import PluginInstance

    from .types import PluginManifest

DataCallback = Callable[[bytes], None]
ExitCallback = Callable[[int | None], None]
StderrCallback = Callable[[str], None]


@runtime_checkable
class PluginChannel(Protocol):
    """Byte-stream transport to one plugin (real process or simulated)."""

    async def spawn(
        self,
        on_data: DataCallback,
        on_exit: ExitCallback,
        on_stderr: StderrCallback | None = None,
    ) -> None: ...
    async def write(self, line: str) -> None: ...
    def write_nowait(self, line: str) -> None: ...
    def kill(self) -> None: ...
    def is_running(self) -> bool: ...
    async def wait(self) -> int | None: ...


@runtime_checkable
class KindStrategy(Protocol):
    """Builds a PluginInstance for one manifest kind."""

    kind: str

    async def create(self, manifest: PluginManifest, context: Any) -> PluginInstance: ...
