"""Software bill of materials — SPDX 2.3 and CycloneDX 1.5 JSON documents."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

from hermetica.core.commands import CommandRunner
from hermetica.core.errors import InspectorError
from hermetica.verify.base import Inspector, VerificationReport
from hermetica.verify.inventory import Inventory, take_inventory

TOOL_NAME = "hermetica"


def sbom_paths(output_dir: Path, pname: str) -> tuple[Path, Path]:
    output_dir = Path(output_dir)
    return output_dir / f"{pname}-sbom.spdx.json", output_dir / f"{pname}-sbom.cdx.json"


class NativeSbomGenerator(Inspector):
    """Build both SBOM documents from a walk of the artifact."""

    name = "sbom"

    def __init__(self, pname: str, output_dir: str | Path = ".") -> None:
        self.pname = pname
        self.output_dir = Path(output_dir)

    def inspect(self, subject: Path) -> VerificationReport:
        inventory = take_inventory(subject)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        spdx_path, cdx_path = sbom_paths(self.output_dir, self.pname)
        created = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        spdx_path.write_text(json.dumps(spdx_document(inventory, created), indent=2) + "\n")
        cdx_path.write_text(json.dumps(cyclonedx_document(inventory, created), indent=2) + "\n")
        return VerificationReport(
            inspector=self.name,
            subject=str(subject),
            passed=True,
            summary=f"{len(inventory.packages)} packages, {len(inventory.files)} files",
            documents=[spdx_path, cdx_path],
            data={"packages": len(inventory.packages), "files": len(inventory.files)},
        )


class SyftSbomGenerator(Inspector):
    """Delegate both documents to ``syft``."""

    name = "sbom"

    def __init__(
        self,
        pname: str,
        output_dir: str | Path = ".",
        runner: CommandRunner | None = None,
        syft_bin: str = "syft",
    ) -> None:
        self.pname = pname
        self.output_dir = Path(output_dir)
        self.runner = runner or CommandRunner()
        self.syft_bin = syft_bin

    def inspect(self, subject: Path) -> VerificationReport:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        spdx_path, cdx_path = sbom_paths(self.output_dir, self.pname)
        argv = [
            self.syft_bin,
            f"dir:{subject}",
            "-o", f"spdx-json={spdx_path}",
            "-o", f"cyclonedx-json={cdx_path}",
        ]
        result = self.runner.run(argv)
        if not result.ok:
            raise InspectorError(
                "syft failed to generate the SBOM.",
                context={"returncode": result.returncode},
                output=result.output,
            )
        return VerificationReport(
            inspector=self.name,
            subject=str(subject),
            passed=True,
            summary=f"SBOMs generated in {self.output_dir}",
            documents=[spdx_path, cdx_path],
        )


def spdx_document(inventory: Inventory, created: str) -> dict:
    root_id = "SPDXRef-Package-root"
    packages = [{
        "SPDXID": root_id,
        "name": inventory.name,
        "versionInfo": inventory.version,
        "downloadLocation": "NOASSERTION",
        "filesAnalyzed": False,
        "licenseConcluded": "NOASSERTION",
        "licenseDeclared": "NOASSERTION",
    }]
    relationships = [{
        "spdxElementId": "SPDXRef-DOCUMENT",
        "relationshipType": "DESCRIBES",
        "relatedSpdxElement": root_id,
    }]
    for i, pkg in enumerate(inventory.packages, start=1):
        spdx_id = f"SPDXRef-Package-{i}"
        packages.append({
            "SPDXID": spdx_id,
            "name": pkg.name,
            "versionInfo": pkg.version,
            "downloadLocation": "NOASSERTION",
            "filesAnalyzed": False,
            "licenseConcluded": "NOASSERTION",
            "licenseDeclared": pkg.license or "NOASSERTION",
            "sourceInfo": f"installed at {pkg.path}",
            "externalRefs": [{
                "referenceCategory": "PACKAGE-MANAGER",
                "referenceType": "purl",
                "referenceLocator": pkg.purl,
            }],
        })
        relationships.append({
            "spdxElementId": root_id,
            "relationshipType": "CONTAINS",
            "relatedSpdxElement": spdx_id,
        })

    files = []
    for i, f in enumerate(inventory.files, start=1):
        files.append({
            "SPDXID": f"SPDXRef-File-{i}",
            "fileName": f"./{f.path}",
            "checksums": [
                {"algorithm": "SHA1", "checksumValue": f.sha1},
                {"algorithm": "SHA256", "checksumValue": f.sha256},
            ],
        })

    return {
        "spdxVersion": "SPDX-2.3",
        "dataLicense": "CC0-1.0",
        "SPDXID": "SPDXRef-DOCUMENT",
        "name": inventory.name,
        "documentNamespace": f"https://spdx.org/spdxdocs/{inventory.name}-{uuid.uuid4()}",
        "creationInfo": {
            "created": created,
            "creators": [f"Tool: {TOOL_NAME}-{_tool_version()}"],
        },
        "packages": packages,
        "files": files,
        "relationships": relationships,
    }


def cyclonedx_document(inventory: Inventory, created: str) -> dict:
    components = []
    for pkg in inventory.packages:
        component = {
            "type": "library",
            "bom-ref": f"{pkg.purl}?path={pkg.path}",
            "name": pkg.name,
            "version": pkg.version,
            "purl": pkg.purl,
        }
        if pkg.license:
            component["licenses"] = [{"expression": pkg.license}]
        components.append(component)
    for f in inventory.files:
        components.append({
            "type": "file",
            "bom-ref": f"file:{f.path}",
            "name": f.path,
            "hashes": [
                {"alg": "SHA-1", "content": f.sha1},
                {"alg": "SHA-256", "content": f.sha256},
            ],
        })

    return {
        "bomFormat": "CycloneDX",
        "specVersion": "1.5",
        "serialNumber": f"urn:uuid:{uuid.uuid4()}",
        "version": 1,
        "metadata": {
            "timestamp": created,
            "tools": {"components": [{"type": "application", "name": TOOL_NAME, "version": _tool_version()}]},
            "component": {"type": "application", "name": inventory.name, "version": inventory.version},
        },
        "components": components,
    }


def _tool_version() -> str:
    from hermetica import __version__

    return __version__
