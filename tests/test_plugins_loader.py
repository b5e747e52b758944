"""Tests for PluginLoader: discovery wiring, idempotent load, kinds, unload and hot reload."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

from mdreader.config.schema import BridgeConfig, PluginEntryConfig, PluginLoadConfig, PluginsConfig
from mdreader.plugins.bridge.simulated_channel import SimulatedChannel
from mdreader.plugins.core.types import PluginStatus, parse_manifest
from mdreader.plugins.loader import PluginLoader
from mdreader.utils.exceptions import (
    KindNotImplementedError,
    PluginDisabledError,
    PluginNotFoundError,
    ProcessExitedError,
    SpawnError,
    UnknownPluginKindError,
)


def _write_manifest(root: Path, data: dict) -> Path:
    plugin_dir = root / data["id"]
    plugin_dir.mkdir(parents=True, exist_ok=True)
    (plugin_dir / "mdreader.plugin.json").write_text(json.dumps(data), encoding="utf-8")
    return plugin_dir


def _config(plugins_root: Path | None = None, **overrides) -> PluginsConfig:
    return PluginsConfig(
        load=PluginLoadConfig(paths=[str(plugins_root)] if plugins_root else []),
        bridge=BridgeConfig(mode="simulated", simulated_delay_seconds=0.0, shutdown_grace_seconds=0.2),
        **overrides,
    )


@pytest.fixture
def plugins_root(tmp_path, isolated_home) -> Path:
    root = tmp_path / "plugins"
    root.mkdir()
    return root


@pytest.mark.asyncio
async def test_discover_includes_builtin_and_disk_plugins(plugins_root) -> None:
    _write_manifest(plugins_root, {"id": "outline", "kind": "native", "entry": {"native": {"binary": "outline"}}})
    loader = PluginLoader(_config(plugins_root))
    manifests = await loader.discover()
    ids = {m.id for m in manifests}
    assert ids == {"diamond-drill", "outline"}
    assert {m.id for m in loader.get_available_plugins()} == ids


@pytest.mark.asyncio
async def test_load_is_idempotent_under_concurrency(plugins_root) -> None:
    ready: list[str] = []
    loader = PluginLoader(_config(plugins_root), on_plugin_ready=ready.append)
    await loader.discover()
    first, second = await asyncio.gather(loader.load("diamond-drill"), loader.load("diamond-drill"))
    assert first is second
    assert first.status == PluginStatus.READY
    assert isinstance(first.bridge.channel, SimulatedChannel)
    assert ready == ["diamond-drill"]
    assert await loader.load("diamond-drill") is first
    assert loader.get_loaded_plugins() == ["diamond-drill"]
    await loader.close()


@pytest.mark.asyncio
async def test_loaded_plugin_answers_requests(plugins_root) -> None:
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    instance = await loader.load("diamond-drill")
    assert await instance.send("ping") == {"pong": True}
    assert instance.describe()["ready"] is True
    await loader.close()


@pytest.mark.asyncio
async def test_load_missing_plugin(plugins_root) -> None:
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    with pytest.raises(PluginNotFoundError, match="Plugin not found: ghost"):
        await loader.load("ghost")


@pytest.mark.asyncio
async def test_load_disabled_plugin(plugins_root) -> None:
    loader = PluginLoader(_config(plugins_root, entries={"diamond-drill": PluginEntryConfig(enabled=False)}))
    await loader.discover()
    with pytest.raises(PluginDisabledError):
        await loader.load("diamond-drill")
    assert not loader.is_loaded("diamond-drill")


@pytest.mark.asyncio
async def test_load_unknown_kind(plugins_root) -> None:
    _write_manifest(plugins_root, {"id": "martian", "type": "alien"})
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    with pytest.raises(UnknownPluginKindError, match="Unknown plugin kind: alien"):
        await loader.load("martian")
    assert not loader.is_loaded("martian")


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["wasm", "iframe", "worker"])
async def test_unimplemented_kinds_yield_error_instances(plugins_root, kind) -> None:
    _write_manifest(plugins_root, {"id": f"{kind}-plugin", "kind": kind})
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    instance = await loader.load(f"{kind}-plugin")
    assert instance.status == PluginStatus.ERROR
    assert isinstance(instance.error, KindNotImplementedError)
    with pytest.raises(KindNotImplementedError, match=f"{kind} plugins not implemented"):
        await instance.send("ping")


@pytest.mark.asyncio
async def test_unload_stops_and_forgets(plugins_root) -> None:
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    instance = await loader.load("diamond-drill")
    await loader.unload("diamond-drill", wait=True)
    assert not loader.is_loaded("diamond-drill")
    assert loader.get("diamond-drill") is None
    assert instance.status == PluginStatus.STOPPED
    assert not instance.bridge.channel.is_running()
    # Unloading twice is a no-op.
    await loader.unload("diamond-drill")


@pytest.mark.asyncio
async def test_unsolicited_exit_drops_instance(plugins_root) -> None:
    errors: list[tuple[str, Exception]] = []
    loader = PluginLoader(_config(plugins_root), on_plugin_error=lambda pid, exc: errors.append((pid, exc)))
    await loader.discover()
    instance = await loader.load("diamond-drill")
    instance.bridge.channel.kill()
    assert not loader.is_loaded("diamond-drill")
    assert instance.status == PluginStatus.ERROR
    assert errors and errors[0][0] == "diamond-drill"
    assert isinstance(errors[0][1], ProcessExitedError)
    reloaded = await loader.load("diamond-drill")
    assert reloaded is not instance
    assert reloaded.is_ready()
    await loader.close()


@pytest.mark.asyncio
async def test_instance_stop_is_not_reported_as_crash(plugins_root) -> None:
    errors: list[tuple[str, Exception]] = []
    loader = PluginLoader(_config(plugins_root), on_plugin_error=lambda pid, exc: errors.append((pid, exc)))
    await loader.discover()
    instance = await loader.load("diamond-drill")
    instance.stop()
    assert instance.status == PluginStatus.STOPPED
    assert await instance.wait_closed(2.0) == 0
    assert instance.status == PluginStatus.STOPPED
    assert instance.error is None
    assert errors == []
    # The stopped instance is forgotten, so the next load starts a fresh one.
    assert not loader.is_loaded("diamond-drill")
    fresh = await loader.load("diamond-drill")
    assert fresh is not instance
    assert fresh.is_ready()
    await loader.close()


@pytest.mark.asyncio
async def test_bridge_stop_without_instance_stop_is_not_reported(plugins_root) -> None:
    errors: list[tuple[str, Exception]] = []
    loader = PluginLoader(_config(plugins_root), on_plugin_error=lambda pid, exc: errors.append((pid, exc)))
    await loader.discover()
    instance = await loader.load("diamond-drill")
    instance.bridge.stop()
    await instance.wait_closed(2.0)
    assert errors == []
    assert instance.status == PluginStatus.READY
    assert not loader.is_loaded("diamond-drill")


@pytest.mark.asyncio
async def test_missing_binary_fails_with_spawn_error_under_default_config(plugins_root) -> None:
    _write_manifest(
        plugins_root,
        {"id": "phantom", "kind": "native", "entry": {"native": {"binary": "definitely-not-a-real-binary-xyz"}}},
    )
    errors: list[tuple[str, Exception]] = []
    loader = PluginLoader(
        PluginsConfig(load=PluginLoadConfig(paths=[str(plugins_root)])),
        on_plugin_error=lambda pid, exc: errors.append((pid, exc)),
    )
    await loader.discover()
    with pytest.raises(SpawnError) as exc_info:
        await loader.load("phantom")
    assert exc_info.value.code == "SPAWN_FAILED"
    assert not loader.is_loaded("phantom")
    assert [pid for pid, _ in errors] == ["phantom"]


@pytest.mark.asyncio
async def test_load_locks_are_not_kept_for_unknown_or_vanished_ids(plugins_root) -> None:
    plugin_dir = _write_manifest(plugins_root, {"id": "outline", "entry": {"native": {"binary": "outline"}}})
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    with pytest.raises(PluginNotFoundError):
        await loader.load("ghost")
    assert "ghost" not in loader._locks
    await loader.load("outline")
    await loader.unload("outline", wait=True)
    assert "outline" in loader._locks
    (plugin_dir / "mdreader.plugin.json").unlink()
    await loader.discover()
    assert "outline" not in loader._locks

@pytest.mark.asyncio
async def test_exit_after_unload_is_not_reported(plugins_root) -> None:
    errors: list[tuple[str, Exception]] = []
    loader = PluginLoader(_config(plugins_root), on_plugin_error=lambda pid, exc: errors.append((pid, exc)))
    await loader.discover()
    await loader.load("diamond-drill")
    await loader.unload("diamond-drill", wait=True)
    assert errors == []


@pytest.mark.asyncio
async def test_hot_reload_picks_up_new_manifest(plugins_root) -> None:
    plugin_dir = _write_manifest(plugins_root, {"id": "outline", "version": "1.0.0", "entry": {"native": {"binary": "outline"}}})
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    old = await loader.load("outline")
    data = json.loads((plugin_dir / "mdreader.plugin.json").read_text(encoding="utf-8"))
    data["version"] = "1.1.0"
    (plugin_dir / "mdreader.plugin.json").write_text(json.dumps(data), encoding="utf-8")
    new = await loader.hot_reload("outline")
    assert new is not old
    assert new.manifest.version == "1.1.0"
    assert old.status == PluginStatus.STOPPED
    assert new.is_ready()
    await loader.close()


@pytest.mark.asyncio
async def test_hot_reload_restores_vanished_manifest(plugins_root) -> None:
    plugin_dir = _write_manifest(plugins_root, {"id": "outline", "entry": {"native": {"binary": "outline"}}})
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    await loader.load("outline")
    (plugin_dir / "mdreader.plugin.json").unlink()
    reloaded = await loader.hot_reload("outline")
    assert reloaded.manifest.id == "outline"
    await loader.close()


@pytest.mark.asyncio
async def test_hot_reload_unknown_plugin(plugins_root) -> None:
    loader = PluginLoader(_config(plugins_root))
    await loader.discover()
    with pytest.raises(PluginNotFoundError, match="after rediscovery"):
        await loader.hot_reload("ghost")


@pytest.mark.asyncio
async def test_registered_manifest_survives_rediscovery(plugins_root) -> None:
    loader = PluginLoader(_config(plugins_root), include_builtin=False)
    loader.register_manifest(parse_manifest({"id": "inline", "entry": {"native": {"binary": "inline"}}}))
    await loader.discover()
    assert [m.id for m in loader.get_available_plugins()] == ["inline"]


def test_settings_for_overlays_entry_settings(isolated_home) -> None:
    loader = PluginLoader(
        _config(entries={"diamond-drill": PluginEntryConfig(settings={"defaultView": "tab", "extra": 1})})
    )
    asyncio.run(loader.discover())
    assert loader.settings_for("diamond-drill") == {"defaultView": "tab", "readOnlyEnforce": True, "extra": 1}
    assert loader.settings_for("ghost") == {}


@pytest.mark.asyncio
@pytest.mark.subprocess
async def test_native_plugin_in_real_process(plugins_root, echo_plugin_dir) -> None:
    _write_manifest(
        plugins_root,
        {
            "id": "echo-live",
            "kind": "native",
            "entry": {"native": {"binary": sys.executable, "args": [str(echo_plugin_dir / "plugin.py")]}},
        },
    )
    config = _config(plugins_root)
    config.bridge.mode = "process"
    loader = PluginLoader(config)
    await loader.discover()
    instance = await loader.load("echo-live")
    assert await instance.send("echo", {"n": 1}) == {"echo": {"n": 1}}
    await loader.close()
    assert not instance.bridge.channel.is_running()
