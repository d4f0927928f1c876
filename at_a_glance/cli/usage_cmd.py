"""CLI command for advisory quota status."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from at_a_glance.pipeline.quota import AdvisoryCache

console = Console()


@click.command("usage")
@click.pass_obj
def usage(settings):
    """Show today's advisory request usage and remaining quota."""
    adv = settings.advisory
    cache = AdvisoryCache(
        Path(adv.usage_path),
        max_daily_requests=adv.max_daily_requests,
        cache_ttl_minutes=adv.cache_ttl_minutes,
        low_remaining_threshold=adv.low_remaining_threshold,
    )
    status = cache.usage_status()

    remaining = status["remaining"]
    if remaining == 0:
        color = "red"
    elif remaining <= adv.low_remaining_threshold:
        color = "yellow"
    else:
        color = "green"

    table = Table(title=f"Advisory usage ({status['date']})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Used", str(status["used"]))
    table.add_row("Remaining", f"[{color}]{remaining}[/{color}]")
    table.add_row("Daily limit", str(status["limit"]))
    table.add_row("Insight calls", str(status["insights"]))
    table.add_row("Prioritization calls", str(status["prioritization"]))
    table.add_row("Resets", status["reset"])
    console.print(table)
    console.print(f"[dim]Usage file: {cache.store.path}[/dim]")
