"""CLI commands that run the status pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from at_a_glance.pipeline.orchestrator import StatusPipeline, StatusSnapshot, build_context
from at_a_glance.sources.calendar import format_event_time

console = Console()
logger = logging.getLogger(__name__)

TIER_STYLES = {"critical": "bold red", "advisory": "magenta", "fallback": "cyan"}


def print_snapshot(snapshot: StatusSnapshot) -> None:
    style = TIER_STYLES.get(snapshot.tier, "white")
    console.print(Panel(f"[{style}]{escape(snapshot.top_line)}[/{style}]", title=f"At A Glance · cycle {snapshot.cycle}"))

    if snapshot.advisory_summary:
        console.print(f"  [magenta]🤖 {escape(snapshot.advisory_summary)}[/magenta]")
    for line in snapshot.detail_lines().values():
        console.print(f"  {escape(line)}")

    if snapshot.events:
        table = Table(title="Upcoming")
        table.add_column("When", style="cyan")
        table.add_column("Event")
        table.add_column("Location", style="dim", max_width=30)
        table.add_column("Category", style="dim")
        for event in snapshot.events:
            table.add_row(
                format_event_time(event, snapshot.generated_at),
                escape(event.title),
                escape(event.location or ""),
                ",".join(sorted(event.categories)),
            )
        console.print(table)

    if snapshot.meeting_summary is not None:
        console.print(f"  [dim]Meetings: {escape(snapshot.meeting_summary.human_summary)}[/dim]")


@click.command("once")
@click.option("--json", "as_json", is_flag=True, help="Print the snapshot as JSON")
@click.pass_obj
def once(settings, as_json: bool):
    """Run a single pipeline cycle and print the snapshot."""
    pipeline = StatusPipeline(build_context(settings))
    snapshot = asyncio.run(pipeline.run_cycle())
    if snapshot is None:
        console.print("[red]No snapshot produced.[/red]")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_snapshot(snapshot)


@click.command("run")
@click.option("--interval", type=float, default=None, help="Seconds between cycles (default from config)")
@click.option("--cycles", type=int, default=None, help="Stop after N cycles (default: run forever)")
@click.pass_obj
def run(settings, interval: Optional[float], cycles: Optional[int]):
    """Run the pipeline periodically, printing the top line on every update.

    Examples:

        at-a-glance run

        at-a-glance run --interval 30 --cycles 10
    """
    interval = interval or settings.pipeline.interval_seconds

    def _show(snapshot: StatusSnapshot) -> None:
        stamp = snapshot.generated_at.strftime("%H:%M:%S")
        style = TIER_STYLES.get(snapshot.tier, "white")
        console.print(f"[dim]{stamp}[/dim] [{style}]{escape(snapshot.top_line)}[/{style}]")

    pipeline = StatusPipeline(build_context(settings), on_publish=_show)
    console.print(f"[bold]At A Glance[/bold] [dim]every {interval:g}s, Ctrl-C to stop[/dim]")
    try:
        asyncio.run(pipeline.run_forever(interval, cycles=cycles))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")
