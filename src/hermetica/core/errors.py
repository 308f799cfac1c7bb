"""Hermetica error types and utilities."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write(path: Path, content: str) -> None:
    """Write content to a file atomically using temp file + rename.

    Writes to a temporary file in the same directory, fsyncs it,
    then atomically replaces the target path.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, str(path))
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class HermeticaError(Exception):
    """Base exception for Hermetica.

    ``context`` holds structured details (paths, hashes, return codes) and
    ``output`` holds the verbatim output of the external tool, if any.
    """

    def __init__(self, message: str, *, context: dict | None = None, output: str = ""):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.output = output


class LockfileError(HermeticaError):
    """Lockfile is missing or malformed."""

    pass


class PipelineError(HermeticaError):
    """Error in project definition or stage graph."""

    pass


class IntegrityMismatch(HermeticaError):
    """Fetched or cached content disagrees with its declared hash."""

    def __init__(self, message: str, *, expected: str, actual: str, context: dict | None = None):
        ctx = dict(context or {})
        ctx.update({"expected": expected, "actual": actual})
        super().__init__(message, context=ctx)
        self.expected = expected
        self.actual = actual


class FetchError(HermeticaError):
    """A package could not be downloaded."""

    pass


class MissingDependency(HermeticaError):
    """The offline cache lacks a package the lockfile requires."""

    pass


class CacheLockedError(HermeticaError):
    """Another writer is populating the same offline cache."""

    pass


class ToolchainError(HermeticaError):
    """The toolchain on PATH does not match the pinned version."""

    pass


class BuildFailure(HermeticaError):
    """The underlying build tool exited non-zero."""

    def __init__(self, message: str, *, returncode: int, output: str = "", context: dict | None = None):
        ctx = dict(context or {})
        ctx["returncode"] = returncode
        super().__init__(message, context=ctx, output=output)
        self.returncode = returncode


class IncompleteArtifact(HermeticaError):
    """A required build output is absent after the build."""

    pass


class NotARepository(HermeticaError):
    """Signature verification was run outside a git repository."""

    pass


class SignatureInvalid(HermeticaError):
    """The current commit's signature does not verify."""

    pass


class InspectorError(HermeticaError):
    """An inspector's external tool failed to produce a report."""

    pass
