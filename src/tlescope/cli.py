#!/usr/bin/env python3
"""TLEscope command-line interface.

Usage::

    tlescope list
    tlescope toggle celestrak:starlink
    tlescope add-url "My feed" https://example.com/feed.tle
    tlescope add-file "Local catalog" data/catalog.tle
    tlescope rename custom:1234 "Renamed feed"
    tlescope remove custom:1234
    tlescope load --force --output data/sources.csv
"""
from __future__ import annotations

import sys
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from .aggregate import status_frame
from .celestrak import CelestrakClient
from .load_state import LoadStatus
from .pipeline import SourcePipeline
from .registry import SourceRegistry
from .store import JsonFileStore

console = Console()

STATUS_STYLES = {
    LoadStatus.IDLE.value: "dim",
    LoadStatus.LOADING.value: "yellow",
    LoadStatus.LOADED.value: "green",
    LoadStatus.ERROR.value: "red",
}


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--store", "store_path", type=click.Path(dir_okay=False),
              envvar="TLESCOPE_STORE", help="JSON store file (env: TLESCOPE_STORE)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, store_path: str | None):
    """TLEscope — multi-source TLE catalog manager."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s — %(message)s")

    store = JsonFileStore(store_path)
    registry = SourceRegistry(store)
    registry.initialize()
    registry.load()
    ctx.obj = registry


@main.command(name="list")
@click.option("--enabled", "-e", "enabled_only", is_flag=True, help="Only enabled sources")
@click.pass_obj
def list_sources(registry: SourceRegistry, enabled_only: bool):
    """List known sources and whether they are enabled.

    Sources not loaded in this session show their cached object count.
    """
    pipeline = SourcePipeline(registry, CelestrakClient(registry.store))
    _display_sources(registry, pipeline, enabled_only=enabled_only)


@main.command()
@click.argument("source_id")
@click.pass_obj
def toggle(registry: SourceRegistry, source_id: str):
    """Enable or disable a source."""
    if registry.get(source_id) is None:
        console.print(f"[yellow]Warning: {source_id} is not in the catalog[/yellow]")
    enabled = registry.toggle(source_id)
    state = "[green]enabled[/green]" if enabled else "[dim]disabled[/dim]"
    console.print(f"{source_id} {state}")


@main.command(name="add-url")
@click.argument("name")
@click.argument("url")
@click.pass_obj
def add_url(registry: SourceRegistry, name: str, url: str):
    """Add a source fetched from a URL."""
    source_id = registry.add_url_source(name, url)
    console.print(f"Added [bold]{name}[/bold] as {source_id}")


@main.command(name="add-file")
@click.argument("name")
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def add_file(registry: SourceRegistry, name: str, filepath: str):
    """Add a source from a local TLE file (stored as pasted text)."""
    source_id = registry.add_text_source(name, Path(filepath).read_text())
    if not registry.get_stored_text(source_id):
        console.print("[yellow]Warning: file contents could not be stored[/yellow]")
    console.print(f"Added [bold]{name}[/bold] as {source_id}")


@main.command()
@click.argument("source_id")
@click.pass_obj
def remove(registry: SourceRegistry, source_id: str):
    """Remove a custom source."""
    if not registry.remove_custom_source(source_id):
        console.print(f"[red]Error: {source_id} is built-in or unknown[/red]")
        sys.exit(1)
    console.print(f"Removed {source_id}")


@main.command()
@click.argument("source_id")
@click.argument("new_name")
@click.pass_obj
def rename(registry: SourceRegistry, source_id: str, new_name: str):
    """Rename a custom source."""
    if not registry.rename_custom_source(source_id, new_name):
        console.print(f"[red]Error: {source_id} is built-in or unknown[/red]")
        sys.exit(1)
    console.print(f"Renamed {source_id} to [bold]{new_name}[/bold]")


@main.command()
@click.option("--force", "-f", is_flag=True, help="Ignore fresh cache and rate-limit cooldown")
@click.option("--output", "-o", type=click.Path(), help="Save source status to CSV")
@click.pass_obj
def load(registry: SourceRegistry, force: bool, output: str | None):
    """Fetch all enabled sources and merge them."""
    pipeline = SourcePipeline(registry, CelestrakClient(registry.store), progress=True)
    merged = pipeline.reconcile(force=force)

    console.print(
        Panel(
            f"Enabled sources: {len(registry.enabled_descriptors())}\n"
            f"Objects: [bold green]{merged.result.total_sats}[/bold green]\n"
            f"Duplicates removed: {merged.result.dups_removed}",
            title="Merged Catalog",
            box=box.ROUNDED,
        )
    )
    _display_sources(registry, pipeline, enabled_only=True)

    if output:
        status_frame(registry).to_csv(output, index=False)
        console.print(f"\nStatus saved to {output}")


def _display_sources(
    registry: SourceRegistry,
    pipeline: SourcePipeline,
    enabled_only: bool = False,
):
    """Display the catalog as a rich table."""
    df = status_frame(registry)
    if enabled_only:
        df = df[df["enabled"]]

    if df.empty:
        console.print("[yellow]No sources to show.[/yellow]")
        return

    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("On", justify="center")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Sats", justify="right")
    table.add_column("Cache age", justify="right")

    for _, row in df.iterrows():
        style = STATUS_STYLES[row["status"]]
        status = row["status"]
        if isinstance(row["error"], str):
            status = f"{status}: {row['error']}"
        age = row["cache_age_s"]
        table.add_row(
            "●" if row["enabled"] else "",
            row["id"],
            row["name"],
            row["kind"],
            f"[{style}]{status}[/{style}]",
            _format_count(registry, pipeline, row),
            _format_age(age),
        )

    console.print(table)


def _format_count(registry: SourceRegistry, pipeline: SourcePipeline, row) -> str:
    if row["status"] == LoadStatus.IDLE.value:
        cached = pipeline.cached_count(registry.get(row["id"]))
        return f"[dim]~{cached}[/dim]" if cached is not None else ""
    count = row["sat_count"]
    if count is None or count != count:  # NaN from pandas
        return ""
    return str(int(count))


def _format_age(age) -> str:
    if age is None or age != age:  # NaN from pandas
        return ""
    if age < 3600:
        return f"{age / 60:.0f} min"
    return f"{age / 3600:.1f} h"


if __name__ == "__main__":
    main()
