"""Dev command — non-hermetic development server or shell."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys

import click
from rich.panel import Panel

from hermetica.cli.main import console, load_project_or_exit, project_argument


def dev_environment(project) -> dict[str, str]:
    env = dict(os.environ)
    env.update(project.build_env)
    env["HERMETICA_DEV"] = "1"
    return env


def _tool_version(argv: list[str]) -> str:
    try:
        proc = subprocess.run(argv, capture_output=True, text=True, check=False)
    except FileNotFoundError:
        return "[red]not found[/red]"
    return proc.stdout.strip() or proc.stderr.strip()


@click.command()
@project_argument
@click.option("--shell", "open_shell", is_flag=True, help="Open an interactive shell instead of the dev server")
def dev(project_path: str | None, open_shell: bool):
    """Start the development server (or a shell) in the source tree.

    Installs dependencies with ``yarn install --frozen-lockfile`` first if
    node_modules is missing. This uses the network and is not hermetic.
    """
    project = load_project_or_exit(project_path)
    source = project.source_dir
    env = dev_environment(project)
    yarn = project.toolchain.yarn_bin

    console.print(
        Panel(
            f"[bold]Project:[/bold] {project.pname} {project.version}\n"
            f"[bold]Source:[/bold] {source}\n"
            f"[bold]node:[/bold] {_tool_version([project.toolchain.node_bin, '--version'])}\n"
            f"[bold]yarn:[/bold] {_tool_version([yarn, '--version'])}",
            title="[bold yellow]Hermetica Dev (not hermetic)[/bold yellow]",
            border_style="yellow",
        )
    )

    try:
        if open_shell:
            shell = os.environ.get("SHELL") or shutil.which("sh") or "/bin/sh"
            sys.exit(subprocess.run([shell], cwd=source, env=env).returncode)

        if not (source / "node_modules").exists():
            console.print("[dim]node_modules missing, running yarn install --frozen-lockfile[/dim]")
            install = subprocess.run([yarn, "install", "--frozen-lockfile"], cwd=source, env=env)
            if install.returncode != 0:
                console.print(f"[red]Error:[/red] yarn install exited {install.returncode}")
                sys.exit(install.returncode)

        sys.exit(subprocess.run([yarn, "dev"], cwd=source, env=env).returncode)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e.filename}: command not found")
        sys.exit(127)
    except KeyboardInterrupt:
        sys.exit(130)
