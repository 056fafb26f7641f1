#!/usr/bin/env python3
"""
Command line interface for worktrail.

Usage:
    worktrail run                   - Run the daemon in the foreground
    worktrail show --tier 10min     - Show recent summaries of a tier
    worktrail taxonomy              - Show the task/behavior directory sent to the analyzer
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from worktrail.daemon.config import Config
from worktrail.daemon.main import main as daemon_main
from worktrail.daemon.models import BaseSummary, MidSummary, SummaryRecord, Tier, TopSummary
from worktrail.daemon.registry import ClassificationRegistry
from worktrail.daemon.store import JsonRecordStore
from worktrail.daemon.taxonomy import JsonTaxonomyStore

console = Console()

config_option = click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the YAML config file",
)


def load_config(config_path: Optional[Path]) -> Config:
    try:
        return Config.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


@click.group()
def cli():
    """worktrail - tiered summaries of screen activity."""


@cli.command()
@config_option
def run(config_path: Optional[Path]):
    """Run the daemon until interrupted or the next stop time."""
    sys.exit(asyncio.run(daemon_main(str(config_path) if config_path else None)))


@cli.command()
@config_option
@click.option("--tier", "-t", type=click.Choice([t.value for t in Tier]), default=Tier.BASE.value)
@click.option("--count", "-n", default=10, help="Number of records")
def show(config_path: Optional[Path], tier: str, count: int):
    """Show the most recent summaries of a tier."""
    config = load_config(config_path)
    store = JsonRecordStore(config.summary.directory)
    records = asyncio.run(store.get_recent(Tier.parse(tier), count))
    display_records(Tier.parse(tier), records)


@cli.command()
@config_option
def taxonomy(config_path: Optional[Path]):
    """Show the task/behavior directory as the analyzer sees it."""
    config = load_config(config_path)
    if not config.taxonomy.directory:
        console.print("[yellow]No taxonomy directory configured[/yellow]")
        return

    registry = ClassificationRegistry(
        JsonTaxonomyStore(config.taxonomy.directory),
        JsonRecordStore(config.summary.directory),
        behavior_recent_days=config.taxonomy.behavior_recent_days,
    )
    text = asyncio.run(registry.render_context())
    if text:
        console.print(text)
    else:
        console.print("[yellow]Taxonomy is empty[/yellow]")


def _headline(record: SummaryRecord) -> str:
    if record.raw_response is not None:
        return "(unparsed response)"
    if isinstance(record, BaseSummary):
        return str(record.details.get("core_action", ""))
    if isinstance(record, MidSummary):
        return str(record.details.get("task_main", ""))
    return str(record.details.get("task_chain", ""))


def _activities(record: SummaryRecord) -> str:
    lines: List[str] = []
    if isinstance(record, BaseSummary):
        for claim in record.claims:
            suffix = f" / {claim.subtask_name}" if claim.subtask_name else ""
            lines.append(f"{claim.category_name}{suffix} ({claim.category_type.value})")
    elif isinstance(record, MidSummary):
        for entry in record.timeline:
            lines.append(f"{entry.start:%H:%M}-{entry.end:%H:%M} {entry.label} ({entry.minutes}m)"
                         if entry.start and entry.end else f"{entry.label} ({entry.minutes}m)")
    elif isinstance(record, TopSummary):
        for entry in record.distribution:
            lines.append(f"{entry.label} ({entry.minutes}m)")
        if record.miscellaneous:
            lines.append("misc: " + ", ".join(e.label for e in record.miscellaneous))
    return "\n".join(lines)


def display_records(tier: Tier, records: List[SummaryRecord]):
    """Display records in a table."""
    if not records:
        console.print(f"[yellow]No {tier.value} summaries found[/yellow]")
        return

    table = Table(title=f"{tier.value} summaries")
    table.add_column("Time", style="cyan", no_wrap=True)
    table.add_column("Activities", style="magenta", no_wrap=False)
    table.add_column("Summary", no_wrap=False)
    table.add_column("Changed", justify="center")

    for record in records:
        table.add_row(
            f"{record.timestamp:%Y-%m-%d %H:%M}" if record.timestamp else "?",
            _activities(record),
            _headline(record)[:120],
            "[dim]no[/dim]" if record.no_change else "[green]yes[/green]",
        )

    console.print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
