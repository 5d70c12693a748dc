"""CLI command implementations."""

from __future__ import annotations

import asyncio
import logging

import click
from rich import box
from rich.console import Console
from rich.table import Table

from mail_assistant.ai.providers.factory import create_provider
from mail_assistant.app import serve
from mail_assistant.config import ConfigError, Settings
from mail_assistant.storage.context_store import ContextStore

logger = logging.getLogger(__name__)
console = Console(width=200)


@click.command()
@click.pass_obj
def run(settings: Settings) -> None:
    """Poll the mailbox and answer mail until interrupted."""
    try:
        asyncio.run(serve(settings))
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        console.print("[dim]Interrupted[/dim]")


@click.command("context-stats")
@click.pass_obj
def context_stats(settings: Settings) -> None:
    """Show per-user entry counts and sizes from the context file."""
    store = ContextStore(settings.context.file)
    asyncio.run(store.load())
    stats = store.stats()

    if not stats:
        console.print(f"[yellow]No stored context in {settings.context.file}.[/yellow]")
        return

    threshold = settings.context.compression_threshold
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("User", max_width=40)
    table.add_column("Entries", justify="right", width=8)
    table.add_column("Characters", justify="right", width=12)
    table.add_column("Compress?", width=10)

    for user_id, row in sorted(stats.items()):
        over = row["total_length"] > threshold
        table.add_row(
            user_id,
            str(row["entries"]),
            str(row["total_length"]),
            "[red]yes[/red]" if over else "[dim]no[/dim]",
        )

    console.print(f"\nContext in [bold]{settings.context.file}[/bold] (threshold {threshold})\n")
    console.print(table)


@click.command("purge-context")
@click.argument("user_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def purge_context(settings: Settings, user_id: str, yes: bool) -> None:
    """Delete every stored context entry for USER_ID."""
    if not yes:
        click.confirm(f"Delete all stored context for {user_id}?", abort=True)
    removed = asyncio.run(_purge(settings, user_id))
    if removed:
        console.print(f"[green]Context for {user_id} deleted.[/green]")
    else:
        console.print(f"[yellow]No stored context for {user_id}.[/yellow]")


async def _purge(settings: Settings, user_id: str) -> bool:
    store = ContextStore(settings.context.file)
    await store.load()
    return await store.purge(user_id)


@click.command()
@click.pass_obj
def health(settings: Settings) -> None:
    """Check that the configured AI provider answers."""
    try:
        provider = create_provider(settings.ai)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"Checking [bold]{provider.name}[/bold]...")
    ok = asyncio.run(provider.health_check())
    if ok:
        console.print(f"[green]{provider.name} is healthy[/green]")
        return
    console.print(f"[red]{provider.name} health check failed[/red]")
    raise SystemExit(1)
