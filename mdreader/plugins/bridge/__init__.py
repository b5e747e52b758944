"""Bridge runtime: one line-delimited JSON channel per native plugin."""

from .bridge import PendingCall, PluginBridge
from .factory import ChannelMode, can_spawn_processes, create_channel
from .process_channel import ProcessChannel
from .simulated_channel import SIMULATED_HANDLERS, SimulatedChannel

__all__ = [
    "SIMULATED_HANDLERS",
    "ChannelMode",
    "PendingCall",
    "PluginBridge",
    "ProcessChannel",
    "SimulatedChannel",
    "can_spawn_processes",
    "create_channel",
]
