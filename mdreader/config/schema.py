"""Configuration schema using Pydantic.

Single data model and defaults for mdreader, persisted to ~/.mdreader/config.json.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PluginLoadConfig(BaseModel):
    """Plugin discovery load paths."""
    paths: list[str] = Field(default_factory=list)


class PluginEntryConfig(BaseModel):
    """Per-plugin state supplied by the host (enabled flag, settings blob, launch extras)."""
    enabled: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)
    args: list[str] = Field(default_factory=list)  # Appended to the manifest args, passed opaquely
    env: dict[str, str] = Field(default_factory=dict)  # e.g. a plugin auth token


class BridgeConfig(BaseModel):
    """Timing and channel selection for plugin bridges."""
    mode: Literal["auto", "process", "simulated"] = "process"  # auto = simulated only where spawning is unsupported
    handshake_timeout_seconds: float = Field(default=5.0, gt=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    shutdown_grace_seconds: float = Field(default=1.0, ge=0)
    simulated_delay_seconds: float = Field(default=0.05, ge=0)
    max_pending: int = Field(default=1024, ge=1)


class PluginsConfig(BaseModel):
    """Plugin discovery, enablement and bridge configuration."""
    enabled: bool = True
    allow: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=list)
    load: PluginLoadConfig = Field(default_factory=PluginLoadConfig)
    entries: dict[str, PluginEntryConfig] = Field(default_factory=dict)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)

    def is_enabled(self, plugin_id: str) -> bool:
        if not self.enabled:
            return False
        if plugin_id in self.deny:
            return False
        if self.allow and plugin_id not in self.allow:
            return False
        entry = self.entries.get(plugin_id)
        return entry.enabled if entry is not None else True


class LoggingConfig(BaseModel):
    """Loguru sink configuration."""
    level: str = "INFO"
    file: str = ""  # Empty = no rotating file sink


class Config(BaseSettings):
    """Root configuration for mdreader."""
    workspace: str = "~/.mdreader/workspace"
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="MDREADER_",
        env_nested_delimiter="__",
    )

    @property
    def workspace_path(self) -> Path:
        """Get expanded workspace path."""
        return Path(self.workspace).expanduser()
