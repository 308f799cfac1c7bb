"""Hermetica - reproducible, offline builds of JavaScript front-ends.

Usage (project.py):
    from hermetica import Project, Toolchain

    project = Project(
        pname="aave-interface",
        version="1.0.0",
        src=".",
        cache_hash="sha256-...",
        toolchain=Toolchain(node="22"),
        port=3000,
    )

Then ``hermetica build``, ``hermetica run``, ``hermetica image``.
"""

from hermetica.core.errors import (
    BuildFailure,
    HermeticaError,
    IncompleteArtifact,
    IntegrityMismatch,
    MissingDependency,
    NotARepository,
    SignatureInvalid,
)
from hermetica.core.models import Artifact, ImageConfig, Meta, OutputSpec, Project, Toolchain

__all__ = [
    "Artifact",
    "BuildFailure",
    "HermeticaError",
    "ImageConfig",
    "IncompleteArtifact",
    "IntegrityMismatch",
    "Meta",
    "MissingDependency",
    "NotARepository",
    "OutputSpec",
    "Project",
    "SignatureInvalid",
    "Toolchain",
]

__version__ = "0.1.0"
