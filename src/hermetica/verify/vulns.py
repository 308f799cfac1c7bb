"""Vulnerability scanning — informational, never fails a build."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import requests

from hermetica.core.commands import CommandRunner
from hermetica.core.errors import InspectorError
from hermetica.verify.base import Inspector, VerificationReport
from hermetica.verify.inventory import take_inventory

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "moderate": 2, "low": 3, "negligible": 4}
_OSV_BATCH = 500


@dataclass(frozen=True)
class Finding:
    id: str
    package: str
    version: str
    severity: str = "unknown"
    fixed_in: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "package": self.package,
            "version": self.version,
            "severity": self.severity,
            "fixed_in": self.fixed_in,
        }


def _rank(finding: Finding) -> tuple:
    return (SEVERITY_ORDER.get(finding.severity.lower(), 5), finding.package, finding.id)


def _report(name: str, subject: Path, findings: list[Finding], limit: int) -> VerificationReport:
    findings = sorted(set(findings), key=_rank)
    shown = findings[:limit] if limit > 0 else findings
    details = [
        f"{f.severity.upper():<10} {f.id:<22} {f.package}@{f.version}"
        + (f" (fixed in {f.fixed_in})" if f.fixed_in else "")
        for f in shown
    ]
    if len(findings) > len(shown):
        details.append(f"... {len(findings) - len(shown)} more not shown")
    return VerificationReport(
        inspector=name,
        subject=str(subject),
        passed=True,
        summary=f"{len(findings)} findings" if findings else "No known vulnerabilities",
        details=details,
        data={"total": len(findings), "findings": [f.to_dict() for f in shown]},
    )


class GrypeScanner(Inspector):
    """Scan the artifact directory with ``grype``."""

    name = "vulns"

    def __init__(self, runner: CommandRunner | None = None, limit: int = 100, grype_bin: str = "grype") -> None:
        self.runner = runner or CommandRunner()
        self.limit = limit
        self.grype_bin = grype_bin

    def inspect(self, subject: Path) -> VerificationReport:
        result = self.runner.run([self.grype_bin, f"dir:{subject}", "-o", "json"])
        if not result.ok:
            raise InspectorError(
                "grype failed to scan the artifact.",
                context={"returncode": result.returncode},
                output=result.output,
            )
        return _report(self.name, subject, parse_grype_output(result.output), self.limit)


def parse_grype_output(output: str) -> list[Finding]:
    """Extract findings from ``grype -o json`` output."""
    # grype may print progress lines before the document
    start = output.find("{")
    if start < 0:
        raise InspectorError("grype produced no JSON output.", output=output)
    try:
        document = json.loads(output[start:])
    except json.JSONDecodeError as e:
        raise InspectorError(f"Could not parse grype output: {e}", output=output) from e

    findings = []
    for match in document.get("matches", []):
        vuln = match.get("vulnerability", {})
        artifact = match.get("artifact", {})
        fix_versions = vuln.get("fix", {}).get("versions") or []
        findings.append(Finding(
            id=vuln.get("id", "?"),
            package=artifact.get("name", "?"),
            version=artifact.get("version", "?"),
            severity=(vuln.get("severity") or "unknown").lower(),
            fixed_in=", ".join(fix_versions),
        ))
    return findings


class OsvScanner(Inspector):
    """Query the OSV batch API for every installed npm package."""

    name = "vulns"

    def __init__(
        self,
        api_url: str = "https://api.osv.dev/v1/querybatch",
        limit: int = 100,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_url = api_url
        self.limit = limit
        self.session = session or requests.Session()
        self.timeout = timeout

    def inspect(self, subject: Path) -> VerificationReport:
        packages = sorted({(p.name, p.version) for p in take_inventory(subject, with_files=False).packages})
        findings: list[Finding] = []
        for start in range(0, len(packages), _OSV_BATCH):
            chunk = packages[start:start + _OSV_BATCH]
            results = self._query(chunk)
            for (name, version), result in zip(chunk, results):
                for vuln in result.get("vulns") or []:
                    findings.append(Finding(id=vuln.get("id", "?"), package=name, version=version))
        logger.debug("OSV: %d packages, %d findings", len(packages), len(findings))
        return _report(self.name, subject, findings, self.limit)

    def _query(self, chunk: list[tuple[str, str]]) -> list[dict]:
        body = {
            "queries": [
                {"package": {"name": name, "ecosystem": "npm"}, "version": version}
                for name, version in chunk
            ]
        }
        try:
            response = self.session.post(self.api_url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return response.json().get("results", [])
        except (requests.RequestException, ValueError) as e:
            raise InspectorError(f"OSV query failed: {e}", context={"url": self.api_url}) from e
