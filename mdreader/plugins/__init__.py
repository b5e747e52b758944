"""Plugin communication layer: manifests, bridges and the loader."""

from .bridge import PluginBridge, ProcessChannel, SimulatedChannel, create_channel
from .core.contracts import KindStrategy, PluginChannel
from .core.types import NativeEntry, PluginKind, PluginManifest, PluginStatus, parse_manifest
from .discovery import MANIFEST_FILENAME, discover_manifests
from .instance import PluginInstance
from .loader import PluginLoader
from .strategies import LoadContext, NativeKindStrategy, UnimplementedKindStrategy

__all__ = [
    "MANIFEST_FILENAME",
    "KindStrategy",
    "LoadContext",
    "NativeEntry",
    "NativeKindStrategy",
    "PluginBridge",
    "PluginChannel",
    "PluginInstance",
    "PluginKind",
    "PluginLoader",
    "PluginManifest",
    "PluginStatus",
    "ProcessChannel",
    "SimulatedChannel",
    "UnimplementedKindStrategy",
    "create_channel",
    "discover_manifests",
    "parse_manifest",
]
