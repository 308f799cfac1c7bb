"""Build commands — hermetica build, run, image, prefetch."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import click
from rich import box
from rich.panel import Panel
from rich.table import Table

from hermetica.cli.main import (
    STATUS_STYLES,
    console,
    exit_with_error,
    load_project_or_exit,
    project_argument,
    project_option,
    run_target,
    setup_logging,
    verbose_option,
)


def print_summary(result) -> None:
    """Stage summary table for a finished run."""
    table = Table(title="Run Summary", box=box.ROUNDED)
    table.add_column("Stage", style="bold", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Time", justify="right")
    table.add_column("Detail", overflow="fold")
    for stats in result.stage_stats:
        style = STATUS_STYLES.get(stats.status, "white")
        table.add_row(
            stats.name,
            f"[{style}]{stats.status}[/{style}]",
            f"{stats.time_seconds:.1f}s" if stats.status == "built" else "-",
            stats.detail,
        )
    console.print(table)
    console.print(
        f"[green]{result.built}[/green] run, [cyan]{result.cached}[/cyan] cached "
        f"in {result.total_time:.1f}s"
    )


def _link_result(artifact_path: Path, link: Path) -> None:
    if link.exists() and not link.is_symlink():
        console.print(f"[yellow]Not replacing {link}: it exists and is not a symlink[/yellow]")
        return
    if link.is_symlink():
        link.unlink()
    link.symlink_to(artifact_path)


@click.command()
@project_argument
@verbose_option
@click.option("--rebuild", is_flag=True, help="Ignore a stored artifact and build again")
@click.option("--keep-work-dir", is_flag=True, help="Keep the temporary build tree")
@click.option("--out-link", "-o", default="result", help="Symlink to the artifact (default: ./result)")
@click.option("--no-link", is_flag=True, help="Do not create the result symlink")
def build(
    project_path: str | None,
    verbose: int,
    rebuild: bool,
    keep_work_dir: bool,
    out_link: str,
    no_link: bool,
):
    """Resolve dependencies, build offline and assemble the artifact.

    PROJECT_PATH defaults to project.py in the current directory.
    """
    from hermetica.config import get_settings
    from hermetica.pipeline import RunOptions

    project = load_project_or_exit(project_path)
    settings = get_settings()

    console.print(
        Panel(
            f"[bold]Project:[/bold] {project.pname} {project.version}\n"
            f"[bold]Source:[/bold] {project.source_dir}\n"
            f"[bold]Node:[/bold] {project.toolchain.node}\n"
            f"[bold]Store:[/bold] {settings.store_dir}",
            title="[bold cyan]Hermetica Build[/bold cyan]",
            border_style="cyan",
        )
    )

    options = RunOptions(rebuild=rebuild, keep_work_dir=keep_work_dir)
    result = run_target(project, "assemble", verbose, options)
    print_summary(result)

    if not no_link:
        _link_result(result.artifact.path, Path(out_link))
    console.print(f"[bold]Artifact:[/bold] {result.artifact.path}")


@click.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@project_option
@verbose_option
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def run_artifact(project_path: str | None, verbose: int, args: tuple[str, ...]):
    """Build if needed, then start the launcher.

    Extra ARGS are passed to the launcher, e.g. ``hermetica run -- -H 0.0.0.0``.
    """
    project = load_project_or_exit(project_path)
    result = run_target(project, "assemble", verbose)
    launcher = result.artifact.launcher

    console.print(f"[dim]Starting {launcher}[/dim]")
    try:
        proc = subprocess.run([str(launcher), *args], env=dict(os.environ))
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(proc.returncode)


@click.command()
@project_argument
@verbose_option
@click.option("--out", "out_path", default=None, type=click.Path(), help="Image archive path")
def image(project_path: str | None, verbose: int, out_path: str | None):
    """Build the container image archive.

    Load it with ``docker load < ARCHIVE``.
    """
    from hermetica.pipeline import RunOptions

    project = load_project_or_exit(project_path)
    options = RunOptions(image_out=Path(out_path) if out_path else None)
    result = run_target(project, "image", verbose, options)
    print_summary(result)

    img = result.image
    console.print(f"[bold]Image:[/bold] {img.reference}")
    console.print(f"[bold]Archive:[/bold] {img.path}")
    console.print(f"[bold]Config:[/bold] sha256:{img.config_digest}")


@click.command()
@project_argument
@verbose_option
def prefetch(project_path: str | None, verbose: int):
    """Populate the offline cache and print its aggregate hash.

    Paste the printed value into the project's ``cache_hash``.
    """
    from hermetica.config import get_settings
    from hermetica.core.errors import HermeticaError
    from hermetica.lockfile import read_lockfile
    from hermetica.resolver import HttpFetcher, compute_cache_hash

    setup_logging(verbose)
    project = load_project_or_exit(project_path)
    settings = get_settings()
    try:
        lockfile = read_lockfile(project.lockfile_path)
        cache = compute_cache_hash(
            lockfile,
            settings.cache_dir,
            fetcher=HttpFetcher(timeout=settings.fetch_timeout),
            concurrency=settings.fetch_concurrency,
        )
    except HermeticaError as e:
        exit_with_error(e)

    console.print(f"[bold]Packages:[/bold] {len(lockfile.entries)}")
    console.print(f"[bold]Cache:[/bold] {cache.path}")
    if project.cache_hash and project.cache_hash != cache.aggregate_hash:
        console.print(f"[yellow]Declared cache_hash differs:[/yellow] {project.cache_hash}")
    click.echo(cache.aggregate_hash)
