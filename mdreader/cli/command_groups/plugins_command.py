"""Plugins command group backed by the plugin loader."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mdreader.config.schema import Config
from mdreader.plugins.instance import PluginInstance
from mdreader.plugins.loader import PluginLoader
from mdreader.utils.exceptions import MdReaderError, classify_exception, sanitize_error_message


def build_loader(cfg: Config) -> PluginLoader:
    return PluginLoader(cfg.plugins, workspace=cfg.workspace_path)


async def _with_plugin(
    cfg: Config,
    plugin_id: str,
    action: Callable[[PluginInstance], Awaitable[Any]],
) -> Any:
    loader = build_loader(cfg)
    await loader.discover()
    try:
        instance = await loader.load(plugin_id)
        return await action(instance)
    finally:
        await loader.close()


def _parse_payload(console: Console, payload: str) -> dict[str, Any]:
    try:
        payload_obj = json.loads(payload) if payload.strip() else {}
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON payload:[/red] {escape(str(exc))}")
        raise typer.Exit(1)
    if not isinstance(payload_obj, dict):
        console.print("[red]Payload must be a JSON object[/red]")
        raise typer.Exit(1)
    return payload_obj


def _print_error(console: Console, exc: MdReaderError) -> None:
    code, category, should_retry = classify_exception(exc)
    console.print(f"[red]{code}:[/red] {escape(sanitize_error_message(exc.message))}")
    hint = " (retrying may succeed)" if should_retry else ""
    console.print(f"[dim]category: {category.value}{hint}[/dim]")


def register_plugins_commands(app: typer.Typer, console: Console, get_config: Callable[[], Config]) -> None:
    """Register the plugins command group."""
    plugins_app = typer.Typer(help="Discover, inspect and call plugins")
    app.add_typer(plugins_app, name="plugins")

    @plugins_app.command("list")
    def plugins_list() -> None:
        cfg = get_config()
        loader = build_loader(cfg)
        manifests = asyncio.run(loader.discover())
        table = Table(title=f"Plugins ({len(manifests)})")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Version")
        table.add_column("Kind")
        table.add_column("Enabled")
        table.add_column("Source")
        for manifest in manifests:
            table.add_row(
                manifest.id,
                manifest.name,
                manifest.version,
                manifest.kind,
                "yes" if cfg.plugins.is_enabled(manifest.id) else "no",
                manifest.root or "builtin",
            )
        console.print(table)
        for diag in loader.diagnostics:
            source = escape(str(diag.get("source", "-")))
            message = escape(str(diag.get("message", "")))
            console.print(f"[yellow]{diag.get('level', '')}:[/yellow] {source}: {message}")

    @plugins_app.command("info")
    def plugins_info(plugin_id: str = typer.Argument(..., help="Plugin id")) -> None:
        cfg = get_config()
        loader = build_loader(cfg)
        asyncio.run(loader.discover())
        manifest = loader.manifests.get(plugin_id)
        if manifest is None:
            console.print(f"[red]Plugin not found:[/red] {escape(plugin_id)}")
            raise typer.Exit(1)
        native = manifest.native_entry()
        table = Table(title=f"Plugin {manifest.id}")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("name", manifest.name)
        table.add_row("version", manifest.version)
        table.add_row("kind", manifest.kind)
        table.add_row("description", manifest.description)
        table.add_row("capabilities", ", ".join(sorted(manifest.capabilities)))
        table.add_row("permissions", ", ".join(sorted(manifest.permissions)))
        table.add_row("binary", native.binary if native else "")
        table.add_row("args", " ".join(native.args) if native else "")
        table.add_row("settings", json.dumps(loader.settings_for(plugin_id), ensure_ascii=False))
        console.print(table)

    @plugins_app.command("ping")
    def plugins_ping(plugin_id: str = typer.Argument(..., help="Plugin id")) -> None:
        cfg = get_config()
        try:
            result = asyncio.run(_with_plugin(cfg, plugin_id, lambda inst: inst.send("ping", {}, timeout=5.0)))
        except MdReaderError as exc:
            _print_error(console, exc)
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] {plugin_id}: {json.dumps(result, ensure_ascii=False)}")

    @plugins_app.command("call")
    def plugins_call(
        plugin_id: str = typer.Argument(..., help="Plugin id"),
        action: str = typer.Argument(..., help="Plugin action name"),
        payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload for the action"),
        timeout: float = typer.Option(30.0, "--timeout", "-t", help="Request timeout in seconds"),
    ) -> None:
        cfg = get_config()
        payload_obj = _parse_payload(console, payload)
        try:
            result = asyncio.run(
                _with_plugin(cfg, plugin_id, lambda inst: inst.send(action, payload_obj, timeout=timeout))
            )
        except MdReaderError as exc:
            _print_error(console, exc)
            raise typer.Exit(1)
        console.print_json(json.dumps(result, ensure_ascii=False))
