"""CLI command for inspecting acquired calendar events."""

from __future__ import annotations

import logging
from datetime import datetime

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from at_a_glance.pipeline.meeting import MeetingContextExtractor
from at_a_glance.pipeline.orchestrator import build_context
from at_a_glance.sources.calendar import format_event_time

console = Console()
logger = logging.getLogger(__name__)

URGENCY_STYLES = {"high": "bold red", "medium-high": "yellow", "medium": "white", "low": "dim"}


@click.command("calendar")
@click.option("--refresh", is_flag=True, help="Bypass the acquisition cache and force a broker refresh")
@click.pass_obj
def calendar(settings, refresh: bool):
    """Show acquired events with meeting context."""
    context = build_context(settings)
    now = datetime.now().astimezone()
    events = context.calendar.acquire(now, force_refresh=refresh)

    if not events:
        console.print("[yellow]No events found in any calendar tier.[/yellow]")
        return

    extractor: MeetingContextExtractor = context.meetings
    table = Table(title=f"Events ({len(events)})")
    table.add_column("When", style="cyan")
    table.add_column("Title")
    table.add_column("Source", style="dim")
    table.add_column("Type", style="dim")
    table.add_column("Urgency", justify="center")
    table.add_column("Prep", justify="right")
    table.add_column("Link", style="blue", max_width=40)

    for event in events:
        meeting = extractor.context_for(event)
        link = meeting.primary_link
        urgency = meeting.urgency.value
        style = URGENCY_STYLES.get(urgency, "white")
        table.add_row(
            format_event_time(event, now),
            escape(event.title),
            event.source.value,
            meeting.meeting_type.value,
            f"[{style}]{urgency}[/{style}]",
            f"{meeting.preparation_minutes}m",
            escape(link.url) if link else "",
        )
    console.print(table)

    upcoming = extractor.get_upcoming_with_context(events, now)
    summary = extractor.summarize_for_arbiter(events, now)
    console.print(f"[bold]{escape(summary.human_summary)}[/bold]")
    if upcoming and upcoming[0].has_preparation:
        for task in upcoming[0].preparation_tasks:
            console.print(f"  • ({task.priority}) {escape(task.text)}")
