"""Artifact store — immutable, derivation-addressed artifact directories."""

from __future__ import annotations

import json
from pathlib import Path

from hermetica.core.fingerprint import Fingerprint, tree_sri
from hermetica.core.models import Artifact

ARTIFACT_METADATA = ".hermetica-artifact.json"


class ArtifactStore:
    """Filesystem-backed artifact storage.

    Each artifact lives at ``<store>/<digest[:32]>-<pname>-<version>`` and
    carries a metadata file with its full derivation fingerprint and tree
    hash. A path without metadata is treated as absent.
    """

    def __init__(self, store_dir: str | Path):
        self.store_dir = Path(store_dir).resolve()
        self.store_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, fingerprint: Fingerprint, pname: str, version: str) -> Path:
        return self.store_dir / f"{fingerprint.digest[:32]}-{pname}-{version}"

    def lookup(self, fingerprint: Fingerprint, pname: str, version: str) -> Artifact | None:
        """Return the stored artifact for this derivation, or None."""
        path = self.path_for(fingerprint, pname, version)
        artifact = self.load(path)
        if artifact is None:
            return None
        stored = Fingerprint.from_dict(self.load_metadata(artifact).get("fingerprint", {}))
        return artifact if fingerprint.matches(stored) else None

    def load(self, path: str | Path) -> Artifact | None:
        path = Path(path)
        meta_path = path / ARTIFACT_METADATA
        if not meta_path.exists():
            return None
        data = json.loads(meta_path.read_text())
        return Artifact(
            path=path,
            pname=data["pname"],
            version=data["version"],
            fingerprint=data["fingerprint"]["digest"],
            tree_hash=data["tree_hash"],
        )

    def load_metadata(self, artifact: Artifact) -> dict:
        return json.loads((artifact.path / ARTIFACT_METADATA).read_text())

    def list_artifacts(self) -> list[Artifact]:
        artifacts = []
        for child in sorted(self.store_dir.iterdir()):
            if child.name.startswith("."):
                continue
            artifact = self.load(child)
            if artifact is not None:
                artifacts.append(artifact)
        return artifacts

    def fingerprints(self, pname: str) -> list[Fingerprint]:
        """Derivation fingerprints of every stored artifact for ``pname``."""
        found = []
        for artifact in self.list_artifacts():
            if artifact.pname != pname:
                continue
            stored = Fingerprint.from_dict(self.load_metadata(artifact).get("fingerprint", {}))
            if stored is not None:
                found.append(stored)
        return found

    def verify(self, artifact: Artifact) -> bool:
        """True if the artifact's tree still matches its recorded hash."""
        return tree_sri(artifact.path, frozenset({ARTIFACT_METADATA})) == artifact.tree_hash
