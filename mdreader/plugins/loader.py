"""Plugin loader: manifests in, running instances out, by kind and idempotently."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from mdreader.config.schema import PluginEntryConfig, PluginsConfig
from mdreader.plugins.bridge.bridge import PluginBridge
from mdreader.plugins.core.contracts import KindStrategy
from mdreader.plugins.core.types import PluginManifest, PluginStatus
from mdreader.plugins.discovery import discover_manifests
from mdreader.plugins.instance import PluginInstance
from mdreader.plugins.strategies import LoadContext, default_strategies
from mdreader.utils.exceptions import (
    PluginDisabledError,
    PluginNotFoundError,
    ProcessExitedError,
    UnknownPluginKindError,
)

_WAIT_CLOSED_SLACK_SECONDS = 5.0


class PluginLoader:
    """Discovers manifests and keeps the registry of live plugin instances."""

    def __init__(
        self,
        config: PluginsConfig | None = None,
        *,
        workspace: Path | str | None = None,
        include_builtin: bool = True,
        on_plugin_ready: Callable[[str], None] | None = None,
        on_plugin_error: Callable[[str, Exception], None] | None = None,
        on_plugin_message: Callable[[str, dict[str, Any]], None] | None = None,
        strategies: dict[str, KindStrategy] | None = None,
    ):
        self.config = config or PluginsConfig()
        self.workspace = workspace
        self.include_builtin = include_builtin
        self.on_plugin_ready = on_plugin_ready
        self.on_plugin_error = on_plugin_error
        self.on_plugin_message = on_plugin_message
        self.strategies: dict[str, KindStrategy] = strategies if strategies is not None else default_strategies()
        self.manifests: dict[str, PluginManifest] = {}
        self.instances: dict[str, PluginInstance] = {}
        self.diagnostics: list[dict[str, Any]] = []
        self._registered: dict[str, PluginManifest] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def register_strategy(self, strategy: KindStrategy) -> None:
        self.strategies[strategy.kind] = strategy

    def register_manifest(self, manifest: PluginManifest) -> None:
        """Add a manifest that survives rediscovery."""
        self._registered[manifest.id] = manifest
        self.manifests[manifest.id] = manifest

    async def discover(self) -> list[PluginManifest]:
        found, diagnostics = discover_manifests(
            self.workspace,
            self.config,
            include_builtin=self.include_builtin,
        )
        manifests = {m.id: m for m in found}
        for plugin_id, manifest in self._registered.items():
            manifests.setdefault(plugin_id, manifest)
        self.manifests = manifests
        self.diagnostics = diagnostics
        # Load locks only exist for ids that can still be loaded.
        self._locks = {pid: lock for pid, lock in self._locks.items() if pid in manifests}
        logger.debug("Discovered {} plugin manifest(s)", len(manifests))
        return list(manifests.values())

    async def load(self, plugin_id: str) -> PluginInstance:
        """Return the live instance for plugin_id, starting it if needed."""
        existing = self.instances.get(plugin_id)
        if existing is not None:
            return existing
        if plugin_id not in self.manifests:
            raise PluginNotFoundError(plugin_id)
        lock = self._locks.setdefault(plugin_id, asyncio.Lock())
        async with lock:
            existing = self.instances.get(plugin_id)
            if existing is not None:
                return existing
            manifest = self.manifests.get(plugin_id)
            if manifest is None:
                raise PluginNotFoundError(plugin_id)
            if not self.config.is_enabled(plugin_id):
                raise PluginDisabledError(plugin_id)
            strategy = self.strategies.get(manifest.kind)
            if strategy is None:
                raise UnknownPluginKindError(plugin_id, manifest.kind)
            instance = await strategy.create(manifest, self._context_for(plugin_id))
            self.instances[plugin_id] = instance
            if instance.status == PluginStatus.READY:
                logger.info("Loaded plugin {} ({})", plugin_id, manifest.kind)
            return instance

    async def unload(self, plugin_id: str, *, wait: bool = False) -> None:
        """Stop and forget a plugin. With wait=True, also wait for its process to end."""
        instance = self.instances.pop(plugin_id, None)
        if instance is None:
            return
        instance.stop()
        logger.info("Unloaded plugin {}", plugin_id)
        if wait:
            await self._wait_closed(instance)

    async def hot_reload(self, plugin_id: str) -> PluginInstance:
        """Restart a plugin from a freshly discovered manifest."""
        previous = self.manifests.get(plugin_id)
        await self.unload(plugin_id, wait=True)
        await self.discover()
        if plugin_id not in self.manifests:
            if previous is None:
                raise PluginNotFoundError(plugin_id, f"Plugin not found after rediscovery: {plugin_id}")
            self.manifests[plugin_id] = previous
        return await self.load(plugin_id)

    def get(self, plugin_id: str) -> PluginInstance | None:
        return self.instances.get(plugin_id)

    def is_loaded(self, plugin_id: str) -> bool:
        return plugin_id in self.instances

    def get_loaded_plugins(self) -> list[str]:
        return list(self.instances)

    def get_available_plugins(self) -> list[PluginManifest]:
        return list(self.manifests.values())

    def settings_for(self, plugin_id: str) -> dict[str, Any]:
        """Manifest setting defaults overlaid with host-supplied settings."""
        manifest = self.manifests.get(plugin_id)
        defaults = manifest.settings_defaults() if manifest is not None else {}
        entry = self.config.entries.get(plugin_id)
        return {**defaults, **(entry.settings if entry is not None else {})}

    def stop_all(self) -> None:
        instances = list(self.instances.values())
        self.instances.clear()
        for instance in instances:
            instance.stop()

    async def close(self) -> None:
        """Stop every plugin and wait for their processes to end."""
        instances = list(self.instances.values())
        self.stop_all()
        await asyncio.gather(*(self._wait_closed(i) for i in instances))

    async def _wait_closed(self, instance: PluginInstance) -> None:
        timeout = self.config.bridge.shutdown_grace_seconds + _WAIT_CLOSED_SLACK_SECONDS
        try:
            await instance.wait_closed(timeout)
        except asyncio.TimeoutError:
            logger.warning("Plugin {} did not exit within {}s", instance.id, timeout)

    def _context_for(self, plugin_id: str) -> LoadContext:
        return LoadContext(
            bridge=self.config.bridge,
            entry=self.config.entries.get(plugin_id) or PluginEntryConfig(),
            on_ready=lambda: self._notify(self.on_plugin_ready, plugin_id),
            on_error=lambda exc: self._notify(self.on_plugin_error, plugin_id, exc),
            on_message=lambda msg: self._notify(self.on_plugin_message, plugin_id, msg),
            on_exit=lambda bridge, code: self._handle_bridge_exit(plugin_id, bridge, code),
        )

    def _handle_bridge_exit(self, plugin_id: str, bridge: PluginBridge, code: int | None) -> None:
        instance = self.instances.get(plugin_id)
        if instance is None or instance.bridge is not bridge:
            return
        # Drop the instance either way so the next load spawns a fresh process.
        self.instances.pop(plugin_id, None)
        if bridge.stop_requested or instance.status == PluginStatus.STOPPED:
            logger.debug("Plugin {} exited after stop (code {})", plugin_id, code)
            return
        error = ProcessExitedError(plugin_id, code)
        instance.status = PluginStatus.ERROR
        instance.error = error
        self._notify(self.on_plugin_error, plugin_id, error)

    def _notify(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Plugin host callback failed")
