"""Autopilot CLI — run the engine, manage rules and presets, inspect activity."""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from autopilot.auto.matcher import find_all
from autopilot.auto.presets import PRESET_PACKS, all_presets
from autopilot.config import get_config
from autopilot.db.database import close_database
from autopilot.db.models import PATTERN_MODES, Pattern
from autopilot.main import Services, build_services, configure_logging, run
from autopilot.utils.errors import AutopilotError

app = typer.Typer(
    name="autopilot",
    help="Rule-driven automation for tmux agent sessions.",
    add_completion=False,
    invoke_without_command=True,
)
console = Console()


def _with_services(fn):
    """Run ``fn(services)`` against the configured database, then close it."""

    async def _go():
        cfg = get_config()
        configure_logging(cfg, console=False)
        services = await build_services(cfg)
        try:
            return await fn(services)
        finally:
            await close_database()

    try:
        return asyncio.run(_go())
    except (AutopilotError, KeyError, ValueError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.callback()
def main(ctx: typer.Context):
    """Run the engine when no command is given."""
    if ctx.invoked_subcommand is None:
        run_engine()


@app.command("run")
def run_engine():
    """Watch tmux sessions and fire rules until interrupted."""
    asyncio.run(run())


@app.command("rules")
def list_rules(
    category: str | None = typer.Option(None, "--category", "-c", help="Filter by category"),
):
    """List stored rules in evaluation order."""

    async def _list(services: Services):
        return services.store.list_rules(category), services.store

    rules, store = _with_services(_list)
    if not rules:
        console.print("[dim]No rules.[/dim]")
        return

    table = Table(title=f"Rules (automation {'on' if store.config.enabled else 'off'})")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Priority", justify="right")
    table.add_column("Cooldown", justify="right")
    table.add_column("Enabled")
    for r in rules:
        enabled = "[green]yes[/green]" if r.enabled else "[dim]no[/dim]"
        if not store.is_valid(r.id):
            enabled = "[red]invalid[/red]"
        table.add_row(
            r.id, r.name, r.category, str(r.priority), f"{r.cooldown_seconds:g}s", enabled
        )
    console.print(table)


@app.command("presets")
def list_presets():
    """List built-in presets and preset packs."""
    table = Table(title="Presets")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Default")
    for p in all_presets():
        table.add_row(p.id, p.name, p.category, "on" if p.enabled else "off")
    console.print(table)

    packs = Table(title="Preset packs")
    packs.add_column("ID", style="dim")
    packs.add_column("Name")
    packs.add_column("Presets", justify="right")
    packs.add_column("Description")
    for pack in PRESET_PACKS:
        packs.add_row(pack.id, pack.name, str(len(pack.presets)), pack.description)
    console.print(packs)


@app.command("install-preset")
def install_preset(preset_id: str = typer.Argument(..., help="Preset ID")):
    """Install one preset as a rule (no-op if already installed)."""

    async def _install(services: Services):
        return await services.store.install_preset(preset_id)

    rule = _with_services(_install)
    console.print(f"[green]Installed[/green] {rule.name} ({rule.id})")


@app.command("install-pack")
def install_pack(
    pack_id: str = typer.Argument(..., help="Pack ID"),
    enable: bool | None = typer.Option(None, "--enable/--disable", help="Force enabled state"),
):
    """Install every preset of a pack."""

    async def _install(services: Services):
        return await services.store.install_pack(pack_id, enabled=enable)

    rules = _with_services(_install)
    console.print(f"[green]Installed[/green] {len(rules)} rules from {pack_id}")


@app.command("export")
def export_rules(path: Path = typer.Argument(..., help="Output JSON file")):
    """Export rules and config to a JSON document."""

    async def _export(services: Services):
        return services.store.export_json()

    path.write_text(_with_services(_export), encoding="utf-8")
    console.print(f"[green]Exported[/green] to {path}")


@app.command("import")
def import_rules(
    path: Path = typer.Argument(..., help="JSON document produced by export"),
    merge: bool = typer.Option(False, "--merge", help="Upsert by id instead of replacing"),
):
    """Import rules from a JSON document (all-or-nothing)."""
    text = path.read_text(encoding="utf-8")

    async def _import(services: Services):
        return await services.store.import_document(text, mode="merge" if merge else "replace")

    rules = _with_services(_import)
    console.print(f"[green]Imported[/green] {len(rules)} rules")


@app.command("activity")
def show_activity(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of events to show"),
    session: str | None = typer.Option(None, "--session", "-s", help="Filter by session"),
    clear: bool = typer.Option(False, "--clear", help="Clear the activity log"),
):
    """Show recent rule firings, newest first."""

    async def _activity(services: Services):
        if clear:
            await services.activity.clear()
            return []
        return services.activity.recent(limit=limit, session_name=session)

    events = _with_services(_activity)
    if clear:
        console.print("[green]Activity log cleared[/green]")
        return
    if not events:
        console.print("[dim]No activity.[/dim]")
        return

    table = Table(title="Activity")
    table.add_column("Time", style="dim")
    table.add_column("Session")
    table.add_column("Rule")
    table.add_column("Matched")
    table.add_column("Result")
    for e in events:
        result = "[green]ok[/green]" if e.success else f"[red]{e.error}[/red]"
        table.add_row(e.timestamp[:19], e.session_name, e.rule_name, e.matched_text[:60], result)
    console.print(table)


@app.command("test-pattern")
def test_pattern(
    text: str = typer.Argument(..., help="Sample output to test against"),
    value: str = typer.Option(..., "--value", "-v", help="Pattern value"),
    mode: str = typer.Option("contains", "--mode", "-m", help=f"One of {', '.join(PATTERN_MODES)}"),
    case_sensitive: bool = typer.Option(False, "--case-sensitive"),
    negate: bool = typer.Option(False, "--negate"),
):
    """Show where a pattern matches a sample text."""
    if mode not in PATTERN_MODES:
        console.print(f"[red]Error:[/red] unknown mode {mode!r}")
        raise typer.Exit(1)
    pattern = Pattern(value=value, mode=mode, case_sensitive=case_sensitive, negate=negate)
    try:
        found = find_all(pattern, text)
    except re.error as e:
        console.print(f"[red]Invalid regex:[/red] {e}")
        raise typer.Exit(1)

    matched = bool(found) != negate
    verdict = "[green]MATCH[/green]" if matched else "[yellow]NO MATCH[/yellow]"
    console.print(f"{verdict} ({len(found)} occurrence{'s' if len(found) != 1 else ''})")
    for index, snippet in found:
        console.print(f"  @{index}: {json.dumps(snippet)}")
