"""Verification commands — smoke test, SBOM, vulnerability scan, signature."""

from __future__ import annotations

from pathlib import Path

import click
from rich import box
from rich.table import Table

from hermetica.cli.main import (
    console,
    load_project_or_exit,
    project_argument,
    project_option,
    run_target,
    verbose_option,
)

SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "moderate": "yellow",
    "low": "dim",
}


def print_report(report) -> None:
    mark = "[green]PASS[/green]" if report.passed else "[red]FAIL[/red]"
    console.print(f"{mark} [bold]{report.inspector}[/bold]: {report.summary}")
    for line in report.details:
        console.print(f"  {line}", markup=False, highlight=False)
    for doc in report.documents:
        console.print(f"  [bold]wrote[/bold] {doc}")


@click.command()
@project_argument
@verbose_option
@click.option("--timeout", type=float, default=None, help="Seconds to let the server run (default 5)")
def test_artifact(project_path: str | None, verbose: int, timeout: float | None):
    """Smoke-test the artifact: inspect outputs and start the launcher briefly.

    A launcher still running at the timeout passes; a crash fails.
    """
    from hermetica.pipeline import RunOptions

    project = load_project_or_exit(project_path)
    result = run_target(project, "smoke", verbose, RunOptions(smoke_timeout=timeout))
    print_report(result.reports["smoke"])


@click.command()
@click.argument("outdir", required=False, default=".", type=click.Path(file_okay=False))
@project_option
@verbose_option
@click.option("--backend", type=click.Choice(["native", "syft"]), default=None, help="SBOM generator")
def generate_sbom(outdir: str, project_path: str | None, verbose: int, backend: str | None):
    """Write SPDX and CycloneDX SBOMs for the artifact into OUTDIR (default: .)."""
    from hermetica.pipeline import RunOptions

    project = load_project_or_exit(project_path)
    options = RunOptions(sbom_backend=backend, sbom_dir=Path(outdir))
    result = run_target(project, "sbom", verbose, options)
    print_report(result.reports["sbom"])


@click.command()
@project_argument
@verbose_option
@click.option("--backend", type=click.Choice(["grype", "osv"]), default=None, help="Vulnerability scanner")
@click.option("--limit", type=int, default=None, help="Maximum findings to show (default 100)")
def scan_vulns(project_path: str | None, verbose: int, backend: str | None, limit: int | None):
    """Scan the artifact for known vulnerabilities.

    Findings are informational: the command exits 0 whenever the scan runs.
    """
    from hermetica.pipeline import RunOptions

    project = load_project_or_exit(project_path)
    result = run_target(project, "scan", verbose, RunOptions(scan_backend=backend, vuln_limit=limit))
    report = result.reports["scan"]

    findings = report.data.get("findings", [])
    if not findings:
        console.print(f"[green]{report.summary}[/green]")
        return

    table = Table(title=f"Vulnerabilities ({report.summary})", box=box.ROUNDED)
    table.add_column("Severity", no_wrap=True)
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("Package")
    table.add_column("Version")
    table.add_column("Fixed in", style="green")
    for finding in findings:
        style = SEVERITY_STYLES.get(finding["severity"], "white")
        table.add_row(
            f"[{style}]{finding['severity']}[/{style}]",
            finding["id"],
            finding["package"],
            finding["version"],
            finding["fixed_in"],
        )
    console.print(table)
    total = report.data.get("total", len(findings))
    if total > len(findings):
        console.print(f"[dim]{total - len(findings)} more not shown (--limit)[/dim]")


@click.command()
@project_argument
@verbose_option
def verify_signature(project_path: str | None, verbose: int):
    """Verify the signature on the current commit of the working directory."""
    project = load_project_or_exit(project_path)
    result = run_target(project, "signature", verbose)
    print_report(result.reports["signature"])


@click.command()
@project_argument
@verbose_option
@click.option("--sbom-dir", type=click.Path(file_okay=False), default=".", help="Where to write SBOMs")
def verify(project_path: str | None, verbose: int, sbom_dir: str):
    """Run the smoke test, SBOM generation and vulnerability scan together."""
    from hermetica.pipeline import RunOptions

    project = load_project_or_exit(project_path)
    result = run_target(project, "verify", verbose, RunOptions(sbom_dir=Path(sbom_dir)))
    for name in ("smoke", "sbom", "scan"):
        print_report(result.reports[name])
