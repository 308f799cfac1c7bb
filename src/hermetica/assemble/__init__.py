"""Artifact assembly and storage."""

from hermetica.assemble.assembler import Assembler, derivation_fingerprint, render_launcher, runtime_path
from hermetica.assemble.store import ARTIFACT_METADATA, ArtifactStore

__all__ = [
    "ARTIFACT_METADATA",
    "ArtifactStore",
    "Assembler",
    "derivation_fingerprint",
    "render_launcher",
    "runtime_path",
]
