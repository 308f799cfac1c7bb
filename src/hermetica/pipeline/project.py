"""Load a Python project file into a Project object."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from hermetica.core.errors import PipelineError
from hermetica.core.fingerprint import parse_sri
from hermetica.core.models import Project

DEFAULT_PROJECT_FILE = "project.py"


def load_project(path: str | Path = DEFAULT_PROJECT_FILE) -> Project:
    """Import a Python project module and extract the `project` variable."""
    filepath = Path(path).resolve()
    if not filepath.exists():
        raise PipelineError(f"Project file not found: {path}", context={"path": str(path)})

    module_name = f"_hermetica_project_{filepath.stem}"
    spec = importlib.util.spec_from_file_location(module_name, filepath)
    if spec is None or spec.loader is None:
        raise PipelineError(f"Cannot load project module: {path}", context={"path": str(path)})

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    project = getattr(module, "project", None)
    if project is None:
        raise PipelineError(f"Project module {path} must define a 'project' variable")
    if not isinstance(project, Project):
        raise PipelineError(f"'project' variable must be a Project instance, got {type(project)}")

    # Relative paths in the project are relative to the file, not the cwd
    project.root = filepath.parent
    validate_project(project)
    return project


def validate_project(project: Project) -> None:
    """Validate project configuration."""
    for field_name in ("pname", "version"):
        value = getattr(project, field_name)
        if not value or "/" in value or value.startswith("."):
            raise PipelineError(f"Project {field_name} must be a plain non-empty name, got {value!r}")

    if not project.source_dir.is_dir():
        raise PipelineError(
            f"Source directory not found: {project.source_dir}",
            context={"src": project.src},
        )

    if project.cache_hash:
        try:
            parse_sri(project.cache_hash)
        except ValueError as e:
            raise PipelineError(f"Invalid cache_hash: {e}", context={"cache_hash": project.cache_hash}) from e

    if not project.build_command:
        raise PipelineError("Project build_command must not be empty")
    if not project.launcher:
        raise PipelineError("Project launcher must not be empty")

    overlap = set(project.outputs.required) & set(project.outputs.optional)
    if overlap:
        raise PipelineError(f"Outputs listed as both required and optional: {sorted(overlap)}")
    for rel in [*project.outputs.required, *project.outputs.optional]:
        if Path(rel).is_absolute() or ".." in Path(rel).parts:
            raise PipelineError(f"Output path must stay inside the build tree: {rel}")

    if not 0 < project.port < 65536:
        raise PipelineError(f"Port out of range: {project.port}")
