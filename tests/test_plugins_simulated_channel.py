import pytest

from mdreader.plugins.bridge.bridge import PluginBridge
from mdreader.plugins.bridge.factory import can_spawn_processes, create_channel
from mdreader.plugins.bridge.process_channel import ProcessChannel
from mdreader.plugins.bridge.simulated_channel import SimulatedChannel
from mdreader.plugins.core.types import NativeEntry
from mdreader.utils.exceptions import UnknownActionError


async def _started(channel: SimulatedChannel, **kwargs) -> PluginBridge:
    bridge = PluginBridge(channel, plugin_id="sim", shutdown_grace=0.5, **kwargs)
    await bridge.start()
    return bridge


@pytest.mark.asyncio
async def test_simulated_handshake_and_ping() -> None:
    bridge = await _started(SimulatedChannel("sim", delay=0.01))
    assert bridge.is_ready()
    assert await bridge.send("ping") == {"pong": True}
    bridge.stop()
    assert await bridge.wait_closed(1.0) == 0


@pytest.mark.asyncio
async def test_simulated_unknown_action_mentions_action_name() -> None:
    bridge = await _started(SimulatedChannel("sim", delay=0.01))
    with pytest.raises(UnknownActionError) as exc_info:
        await bridge.send("totally-unknown", {})
    assert "totally-unknown" in exc_info.value.message
    bridge.stop()


@pytest.mark.asyncio
async def test_simulated_canned_handlers() -> None:
    bridge = await _started(SimulatedChannel("sim", delay=0))
    caps = await bridge.send("get_capabilities")
    assert "browse" in caps["actions"]
    listing = await bridge.send("browse", {"path": "/notes"})
    assert listing["path"] == "/notes"
    assert len(listing["entries"]) == 2
    analysis = await bridge.send("analyze", {"files": ["a.md", "b.md"]})
    assert analysis["files_analyzed"] == 2
    bridge.stop()


@pytest.mark.asyncio
async def test_simulated_handler_exception_becomes_rejection() -> None:
    def broken(_payload):
        raise RuntimeError("handler exploded")

    bridge = await _started(SimulatedChannel("sim", delay=0, handlers={"broken": broken}))
    with pytest.raises(Exception, match="handler exploded"):
        await bridge.send("broken")
    bridge.stop()


@pytest.mark.asyncio
async def test_simulated_kill_reports_exit() -> None:
    exits = []
    channel = SimulatedChannel("sim", delay=0)
    await _started(channel, on_exit=exits.append)
    channel.kill()
    assert exits == [None]
    assert not channel.is_running()


def test_create_channel_modes() -> None:
    entry = NativeEntry(binary="definitely-not-a-real-binary-xyz", args=("--plugin-mode",))
    # A missing binary is not a reason to simulate; spawning fails loudly instead.
    assert isinstance(create_channel("p", entry), ProcessChannel)
    assert isinstance(create_channel("p", entry, mode="auto"), ProcessChannel)
    assert isinstance(create_channel("p", entry, mode="simulated"), SimulatedChannel)
    forced = create_channel("p", entry, mode="process", extra_args=["--token", "abc"])
    assert isinstance(forced, ProcessChannel)
    assert forced.args == ["--plugin-mode", "--token", "abc"]


def test_auto_mode_simulates_only_without_subprocess_support(monkeypatch) -> None:
    assert can_spawn_processes("linux")
    assert not can_spawn_processes("emscripten")
    monkeypatch.setattr("mdreader.plugins.bridge.factory.sys.platform", "emscripten")
    entry = NativeEntry(binary="diamond")
    assert isinstance(create_channel("p", entry, mode="auto"), SimulatedChannel)
    assert isinstance(create_channel("p", entry, mode="process"), ProcessChannel)
