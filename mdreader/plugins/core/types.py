"""Types for plugin manifests and instance bookkeeping."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from mdreader.utils.exceptions import ManifestError


class PluginKind(str, Enum):
    """Plugin runtime kinds a manifest may declare."""

    NATIVE = "native"
    WASM = "wasm"
    IFRAME = "iframe"
    WORKER = "worker"


class PluginStatus(str, Enum):
    """Lifecycle status of a loaded plugin instance."""

    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    STOPPED = "stopped"


class NativeEntry(BaseModel):
    """Launch spec for an out-of-process executable."""

    model_config = ConfigDict(frozen=True)

    binary: str = Field(min_length=1)
    args: tuple[str, ...] = ()


class PluginManifest(BaseModel):
    """Static plugin description; immutable after discovery."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str = ""
    version: str = "0.0.0"
    # Kept as a plain string so unknown kinds survive discovery and fail at load time.
    kind: str = Field(default=PluginKind.NATIVE.value, validation_alias=AliasChoices("kind", "type"))
    description: str = ""
    author: str = ""
    capabilities: frozenset[str] = frozenset()
    entry: dict[str, Any] = Field(default_factory=dict)
    permissions: frozenset[str] = frozenset()
    settings_schema: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("settings_schema", "settingsSchema", "settings"),
    )
    # Directory the manifest was read from; None for builtin manifests.
    root: str | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("id"):
            data = {**data, "name": data["id"]}
        return data

    def native_entry(self) -> NativeEntry | None:
        raw = self.entry.get(PluginKind.NATIVE.value)
        if not isinstance(raw, dict):
            return None
        try:
            return NativeEntry.model_validate(raw)
        except ValidationError:
            return None

    def settings_defaults(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key, spec in self.settings_schema.items():
            if isinstance(spec, dict) and "default" in spec:
                out[key] = spec["default"]
        return out


def parse_manifest(data: Any, *, source: str | None = None) -> PluginManifest:
    """Validate raw manifest JSON. Raises ManifestError if invalid."""
    if not isinstance(data, dict):
        raise ManifestError("manifest root must be an object", source=source)
    try:
        return PluginManifest.model_validate(data)
    except ValidationError as exc:
        raise ManifestError(f"invalid manifest: {exc.errors()[0].get('msg', 'validation failed')}", source=source) from exc
