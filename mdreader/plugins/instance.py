"""Loaded plugin instance: the unit of bookkeeping handed to the host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mdreader.plugins.bridge.bridge import PluginBridge
from mdreader.plugins.core.types import PluginManifest, PluginStatus
from mdreader.utils.exceptions import KindNotImplementedError


@dataclass(eq=False)
class PluginInstance:
    """Manifest, status and bridge of one loaded plugin."""

    id: str
    manifest: PluginManifest
    status: PluginStatus = PluginStatus.LOADING
    bridge: PluginBridge | None = None
    error: Exception | None = None

    async def send(
        self,
        action: str,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        if self.bridge is None:
            raise KindNotImplementedError(self.id, self.manifest.kind)
        return await self.bridge.send(action, payload, timeout)

    def stop(self) -> None:
        if self.bridge is not None:
            self.bridge.stop()
        if self.status in (PluginStatus.LOADING, PluginStatus.READY):
            self.status = PluginStatus.STOPPED

    async def wait_closed(self, timeout: float | None = None) -> int | None:
        if self.bridge is None:
            return None
        return await self.bridge.wait_closed(timeout)

    def is_ready(self) -> bool:
        return self.status == PluginStatus.READY and self.bridge is not None and self.bridge.is_ready()

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.manifest.name,
            "version": self.manifest.version,
            "kind": self.manifest.kind,
            "status": self.status.value,
            "ready": self.is_ready(),
            "pending": self.bridge.pending_count if self.bridge is not None else 0,
            "error": str(self.error) if self.error is not None else None,
        }
