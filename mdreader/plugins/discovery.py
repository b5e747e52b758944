"""Manifest discovery: builtin manifests plus plugin directories on disk."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from mdreader.config.schema import PluginsConfig
from mdreader.plugins.core.types import PluginManifest, parse_manifest
from mdreader.utils.exceptions import ManifestError

MANIFEST_FILENAME = "mdreader.plugin.json"

DIAMOND_DRILL_MANIFEST: dict[str, Any] = {
    "id": "diamond-drill",
    "name": "Diamond Drill",
    "version": "0.1.0",
    "kind": "native",
    "description": "Security-focused file analyzer with read-only enforcement",
    "author": "Diamond Forgemaster",
    "capabilities": ["file:analyze", "file:report", "file:browse", "ui:panel"],
    "entry": {
        "native": {"binary": "diamond", "args": ["--plugin-mode"]},
        "wasm": "diamond_drill.wasm",
    },
    "permissions": ["read:files", "write:reports"],
    "settings": {
        "defaultView": {"type": "select", "default": "panel"},
        "readOnlyEnforce": {"type": "boolean", "default": True},
    },
}


def builtin_manifests() -> list[PluginManifest]:
    """Manifests shipped with the editor."""
    return [parse_manifest(DIAMOND_DRILL_MANIFEST, source="builtin")]


def get_plugin_roots(workspace: Path | str | None, config: PluginsConfig) -> list[Path]:
    """
    Return plugin root directories in a consistent order, deduplicated by resolve().
    Order: config load.paths, workspace/.mdreader/plugins, ~/.mdreader/plugins.
    A load path may be a manifest file, a plugin directory, or a directory of plugins.
    """
    candidates: list[Path] = [Path(p).expanduser() for p in config.load.paths if p.strip()]
    if workspace is not None:
        candidates.append(Path(workspace).expanduser() / ".mdreader" / "plugins")
    candidates.append(Path.home() / ".mdreader" / "plugins")
    roots: list[Path] = []
    seen: set[str] = set()

    def _add(root: Path) -> None:
        key = str(root.resolve())
        if key not in seen:
            seen.add(key)
            roots.append(root.resolve())

    for candidate in candidates:
        if not candidate.exists():
            continue
        if candidate.is_file() and candidate.name == MANIFEST_FILENAME:
            _add(candidate.parent)
        elif candidate.is_dir() and (candidate / MANIFEST_FILENAME).exists():
            _add(candidate)
        elif candidate.is_dir():
            for child in sorted(candidate.iterdir()):
                if child.is_dir() and (child / MANIFEST_FILENAME).exists():
                    _add(child)
    return roots


def read_manifest(root: Path) -> PluginManifest:
    """Parse the manifest in a plugin root and bind it to that directory."""
    path = root / MANIFEST_FILENAME
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ManifestError(f"cannot read manifest: {exc}", source=str(path)) from exc
    manifest = parse_manifest(raw, source=str(path))
    return manifest.model_copy(update={"root": str(root)})


def discover_manifests(
    workspace: Path | str | None,
    config: PluginsConfig,
    *,
    include_builtin: bool = True,
) -> tuple[list[PluginManifest], list[dict[str, Any]]]:
    """Collect well-formed manifests; the first manifest seen for an id wins."""
    manifests: dict[str, PluginManifest] = {}
    diagnostics: list[dict[str, Any]] = []
    if include_builtin:
        for manifest in builtin_manifests():
            manifests[manifest.id] = manifest
    for root in get_plugin_roots(workspace, config):
        try:
            manifest = read_manifest(root)
        except ManifestError as exc:
            logger.warning("Skipping plugin manifest {}: {}", exc.details.get("source", root), exc.message)
            diagnostics.append({"level": "error", "source": str(root), "message": exc.message})
            continue
        if manifest.id in manifests:
            diagnostics.append(
                {
                    "level": "warning",
                    "pluginId": manifest.id,
                    "source": str(root),
                    "message": f"duplicate plugin id ignored: {manifest.id}",
                }
            )
            continue
        manifests[manifest.id] = manifest
    return list(manifests.values()), diagnostics
