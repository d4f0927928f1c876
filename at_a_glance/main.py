"""At A Glance CLI: one status line for everything that matters right now."""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from at_a_glance.cli.calendar_cmd import calendar
from at_a_glance.cli.run_cmd import once, run
from at_a_glance.cli.usage_cmd import usage
from at_a_glance.config import Settings, resolve_config_path


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config.json")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """At A Glance: calendar, tasks, weather and system state in one line."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    path = resolve_config_path(config_path)
    ctx.obj = Settings.load(path)


cli.add_command(once)
cli.add_command(run)
cli.add_command(calendar)
cli.add_command(usage)


if __name__ == "__main__":
    cli()
