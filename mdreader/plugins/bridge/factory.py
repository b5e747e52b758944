"""Channel selection for native plugins: real subprocess or simulated stand-in."""

from __future__ import annotations

import sys
from typing import Literal

from loguru import logger

from mdreader.plugins.core.contracts import PluginChannel
from mdreader.plugins.core.types import NativeEntry

from .process_channel import ProcessChannel
from .simulated_channel import DEFAULT_SIMULATED_DELAY_SECONDS, SimulatedChannel

ChannelMode = Literal["auto", "process", "simulated"]

# Interpreters built for these platforms have no subprocess support.
_NO_SUBPROCESS_PLATFORMS = frozenset({"emscripten", "wasi"})


def can_spawn_processes(platform: str | None = None) -> bool:
    """Whether the running interpreter can launch child processes at all."""
    return (platform or sys.platform) not in _NO_SUBPROCESS_PLATFORMS


def create_channel(
    plugin_id: str,
    entry: NativeEntry,
    *,
    mode: ChannelMode = "process",
    extra_args: list[str] | tuple[str, ...] = (),
    env: dict[str, str] | None = None,
    cwd: str | None = None,
    simulated_delay: float = DEFAULT_SIMULATED_DELAY_SECONDS,
) -> PluginChannel:
    """Pick the channel for a native entry. Launch args are passed through untouched.

    A missing executable is never papered over: ``process`` (and ``auto`` on a
    runtime that can spawn) fails at start with SpawnError.
    """
    if mode == "simulated":
        return SimulatedChannel(plugin_id, delay=simulated_delay)
    if mode == "auto" and not can_spawn_processes():
        logger.info("[{}] runtime cannot spawn processes; using simulated channel", plugin_id)
        return SimulatedChannel(plugin_id, delay=simulated_delay)
    return ProcessChannel(
        entry.binary,
        [*entry.args, *extra_args],
        plugin_id=plugin_id,
        env=env,
        cwd=cwd,
    )
