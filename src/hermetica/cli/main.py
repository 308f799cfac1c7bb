"""Hermetica CLI — main entry point and shared utilities."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console

if TYPE_CHECKING:
    from hermetica.core.errors import HermeticaError
    from hermetica.core.models import Project
    from hermetica.pipeline import RunOptions, RunResult

console = Console()

STATUS_STYLES = {
    "built": "green",
    "cached": "cyan",
    "failed": "red",
    "pending": "dim",
}


def setup_logging(verbose: int) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose >= 2 else logging.INFO if verbose == 1 else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def project_argument(fn):
    """Shared Click argument decorator for PROJECT_PATH (default ./project.py)."""
    return click.argument("project_path", required=False, default=None)(fn)


def project_option(fn):
    """PROJECT_PATH as an option, for commands with their own positionals."""
    return click.option(
        "--project", "-f", "project_path", default=None,
        help="Project file (default: ./project.py)",
    )(fn)


def verbose_option(fn):
    return click.option(
        "--verbose", "-v", count=True,
        help="Verbosity level: -v per-stage progress, -vv every external command",
    )(fn)


def load_project_or_exit(project_path: str | None) -> Project:
    """Load the project file, exiting with an error message on failure."""
    from hermetica.core.errors import HermeticaError
    from hermetica.pipeline import DEFAULT_PROJECT_FILE, load_project

    path = project_path or str(Path.cwd() / DEFAULT_PROJECT_FILE)
    if project_path is None and not Path(path).exists():
        console.print(
            "[red]Error:[/red] No project file specified and "
            f"[bold]{DEFAULT_PROJECT_FILE}[/bold] not found in the current directory."
        )
        sys.exit(1)
    try:
        return load_project(path)
    except HermeticaError as e:
        exit_with_error(e)
    except Exception as e:
        console.print(f"[red]Error loading project:[/red] {e}")
        sys.exit(1)


def exit_with_error(error: HermeticaError) -> None:
    """Print an error and the underlying tool output verbatim, then exit 1."""
    console.print("[red]Error:[/red] ", end="")
    console.print(error.message, markup=False, highlight=False)
    if error.output:
        console.print(error.output.rstrip(), markup=False, highlight=False)
    sys.exit(1)


def run_target(
    project: Project,
    target: str,
    verbose: int = 0,
    options: RunOptions | None = None,
) -> RunResult:
    """Run the pipeline up to ``target``; any pipeline error exits 1."""
    from hermetica.core.errors import HermeticaError
    from hermetica.pipeline import run

    setup_logging(verbose)
    try:
        return run(project, target, options=options, verbosity=max(verbose, 1))
    except HermeticaError as e:
        exit_with_error(e)


@click.group(invoke_without_command=True)
@click.pass_context
def main(ctx: click.Context):
    """Hermetica — reproducible builds for JavaScript front-ends.

    With no command, runs ``build`` on ./project.py.
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(build)


def cli():
    """Entrypoint that loads .env before running the CLI."""
    from dotenv import load_dotenv

    load_dotenv()
    main()


# Import subcommand modules to register commands
from hermetica.cli.build_commands import build, image, prefetch, run_artifact  # noqa: E402
from hermetica.cli.clean_commands import clean  # noqa: E402
from hermetica.cli.dev_commands import dev  # noqa: E402
from hermetica.cli.info_commands import status  # noqa: E402
from hermetica.cli.verify_commands import (  # noqa: E402
    generate_sbom,
    scan_vulns,
    test_artifact,
    verify,
    verify_signature,
)

# Register commands
main.add_command(build)
main.add_command(run_artifact, name="run")
main.add_command(image)
main.add_command(prefetch)
main.add_command(test_artifact, name="test-artifact")
main.add_command(generate_sbom, name="generate-sbom")
main.add_command(scan_vulns, name="scan-vulns")
main.add_command(verify_signature, name="verify-signature")
main.add_command(verify)
main.add_command(dev)
main.add_command(status)
main.add_command(clean)
