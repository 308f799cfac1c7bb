"""Clean command — remove the storage directory."""

from __future__ import annotations

import click

from hermetica.cli.main import console


@click.command()
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt")
def clean(yes: bool):
    """Remove the store, offline caches, logs and registry.

    Deletes the entire storage directory. Use --yes to skip the confirmation prompt.
    """
    from hermetica.config import get_settings
    from hermetica.core.fs import remove_tree
    from hermetica.db.engine import reset_engines

    storage = get_settings().storage_dir

    if not storage.exists():
        console.print("[dim]Nothing to clean — storage directory does not exist.[/dim]")
        return

    if not yes:
        console.print(f"This will delete [bold]{storage}[/bold] and all its contents.")
        if not click.confirm("Continue?"):
            console.print("[dim]Aborted.[/dim]")
            return

    reset_engines()
    remove_tree(storage)
    console.print(f"[green]Cleaned:[/green] {storage}")
