"""Info commands — hermetica status."""

from __future__ import annotations

from pathlib import Path

import click
from rich import box
from rich.table import Table

from hermetica.cli.main import STATUS_STYLES, console


@click.command()
@click.option("--runs", "run_limit", default=10, type=int, help="Number of recent runs to show")
@click.option("--check", is_flag=True, help="Re-hash every stored artifact against its recorded tree hash")
@click.option("--prune", is_flag=True, help="Forget registry rows whose store path no longer exists")
def status(run_limit: int, check: bool, prune: bool):
    """Show store paths and recent runs from the registry."""
    from hermetica.assemble import ArtifactStore
    from hermetica.config import get_settings
    from hermetica.db.engine import get_registry_session, init_registry
    from hermetica.db.registry import forget_store_path, list_store_paths, recent_runs

    settings = get_settings()
    if not settings.storage_dir.exists():
        console.print(f"[dim]No storage directory at {settings.storage_dir}; nothing built yet.[/dim]")
        return

    init_registry(settings)
    store = ArtifactStore(settings.store_dir) if check else None

    with get_registry_session(settings) as session:
        paths = list_store_paths(session)
        runs = recent_runs(session, limit=run_limit)

        table = Table(title="Store Paths", box=box.ROUNDED)
        table.add_column("Package", style="bold", no_wrap=True)
        table.add_column("Version")
        table.add_column("Path", overflow="fold")
        table.add_column("State", justify="center")
        for row in paths:
            path = Path(row.path)
            if not path.exists():
                if prune:
                    forget_store_path(session, row.fingerprint)
                    state = "[yellow]forgotten[/yellow]"
                else:
                    state = "[red]missing[/red]"
            elif store is not None:
                artifact = store.load(path)
                ok = artifact is not None and store.verify(artifact)
                state = "[green]ok[/green]" if ok else "[red]modified[/red]"
            else:
                state = "[green]present[/green]"
            table.add_row(row.pname, row.version, row.path, state)
        console.print(table)

        run_table = Table(title="Recent Runs", box=box.ROUNDED)
        run_table.add_column("Started", no_wrap=True)
        run_table.add_column("Project", style="bold")
        run_table.add_column("Target")
        run_table.add_column("Status", justify="center")
        run_table.add_column("Error", overflow="fold")
        for run in runs:
            style = {"completed": "green", "running": "yellow"}.get(run.status, STATUS_STYLES.get(run.status, "white"))
            started = run.started_at.strftime("%Y-%m-%d %H:%M:%S") if run.started_at else "-"
            run_table.add_row(
                started,
                run.project,
                run.target,
                f"[{style}]{run.status}[/{style}]",
                (run.error_message or "").splitlines()[0] if run.error_message else "",
            )
        console.print(run_table)
