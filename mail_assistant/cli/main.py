"""CLI entry point for the mail assistant."""

import logging

import click
from dotenv import load_dotenv

from mail_assistant.app import configure_logging
from mail_assistant.config import Settings

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Mail assistant: run the service and inspect its stored context."""
    load_dotenv()
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj = Settings.from_env()


# Import and register commands after cli is defined to avoid circular imports.
from mail_assistant.cli.commands import context_stats, health, purge_context, run  # noqa: E402

cli.add_command(run)
cli.add_command(context_stats)
cli.add_command(purge_context)
cli.add_command(health)
