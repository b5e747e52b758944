"""Kind strategies: how each manifest kind becomes a PluginInstance."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from mdreader.config.schema import BridgeConfig, PluginEntryConfig
from mdreader.plugins.bridge.bridge import PluginBridge
from mdreader.plugins.bridge.factory import create_channel
from mdreader.plugins.core.contracts import KindStrategy
from mdreader.plugins.core.types import NativeEntry, PluginKind, PluginManifest, PluginStatus
from mdreader.plugins.instance import PluginInstance
from mdreader.utils.exceptions import KindNotImplementedError, ManifestError


@dataclass(slots=True)
class LoadContext:
    """Per-load inputs the loader hands to a strategy."""

    bridge: BridgeConfig
    entry: PluginEntryConfig
    on_ready: Callable[[], None]
    on_error: Callable[[Exception], None]
    on_message: Callable[[dict[str, Any]], None]
    on_exit: Callable[[PluginBridge, int | None], None]


def _bind_to_root(entry: NativeEntry, root: str | None) -> NativeEntry:
    binary = entry.binary
    if root and not os.path.isabs(binary) and (os.sep in binary or binary.startswith(".")):
        return entry.model_copy(update={"binary": str(Path(root) / binary)})
    return entry


class NativeKindStrategy:
    """Out-of-process executable speaking the line-delimited JSON protocol."""

    kind = PluginKind.NATIVE.value

    async def create(self, manifest: PluginManifest, context: LoadContext) -> PluginInstance:
        entry = manifest.native_entry()
        if entry is None:
            raise ManifestError(f"manifest '{manifest.id}' has no native entry", source=manifest.root)
        entry = _bind_to_root(entry, manifest.root)
        cfg = context.bridge
        channel = create_channel(
            manifest.id,
            entry,
            mode=cfg.mode,
            extra_args=context.entry.args,
            env=context.entry.env or None,
            cwd=manifest.root,
            simulated_delay=cfg.simulated_delay_seconds,
        )
        bridge = PluginBridge(
            channel,
            plugin_id=manifest.id,
            on_message=context.on_message,
            on_error=context.on_error,
            on_ready=context.on_ready,
            on_exit=lambda code: context.on_exit(bridge, code),
            handshake_timeout=cfg.handshake_timeout_seconds,
            request_timeout=cfg.request_timeout_seconds,
            shutdown_grace=cfg.shutdown_grace_seconds,
            max_pending=cfg.max_pending,
        )
        instance = PluginInstance(id=manifest.id, manifest=manifest, status=PluginStatus.LOADING, bridge=bridge)
        try:
            await bridge.start()
        except BaseException as exc:
            bridge.stop()
            instance.status = PluginStatus.ERROR
            instance.error = exc if isinstance(exc, Exception) else None
            raise
        instance.status = PluginStatus.READY
        return instance


class UnimplementedKindStrategy:
    """Declared extension point: yields an error-status instance whose send always fails."""

    def __init__(self, kind: str):
        self.kind = kind

    async def create(self, manifest: PluginManifest, context: LoadContext) -> PluginInstance:
        logger.warning("{} plugins not yet implemented: {}", self.kind, manifest.id)
        return PluginInstance(
            id=manifest.id,
            manifest=manifest,
            status=PluginStatus.ERROR,
            bridge=None,
            error=KindNotImplementedError(manifest.id, self.kind),
        )


def default_strategies() -> dict[str, KindStrategy]:
    """Strategy table keyed by manifest kind."""
    return {
        PluginKind.NATIVE.value: NativeKindStrategy(),
        PluginKind.WASM.value: UnimplementedKindStrategy(PluginKind.WASM.value),
        PluginKind.IFRAME.value: UnimplementedKindStrategy(PluginKind.IFRAME.value),
        PluginKind.WORKER.value: UnimplementedKindStrategy(PluginKind.WORKER.value),
    }
