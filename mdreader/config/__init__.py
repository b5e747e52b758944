"""Configuration module for mdreader."""

from mdreader.config.loader import get_config_path, load_config, save_config
from mdreader.config.schema import BridgeConfig, Config, PluginEntryConfig, PluginsConfig

__all__ = [
    "BridgeConfig",
    "Config",
    "PluginEntryConfig",
    "PluginsConfig",
    "get_config_path",
    "load_config",
    "save_config",
]
