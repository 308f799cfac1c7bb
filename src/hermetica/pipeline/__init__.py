"""Pipeline: stage DAG, project loading and the runner."""

from hermetica.pipeline.dag import STAGES, Stage, resolve_order
from hermetica.pipeline.project import DEFAULT_PROJECT_FILE, load_project, validate_project
from hermetica.pipeline.runner import RunOptions, RunResult, StageStats, run

__all__ = [
    "DEFAULT_PROJECT_FILE",
    "STAGES",
    "RunOptions",
    "RunResult",
    "Stage",
    "StageStats",
    "load_project",
    "resolve_order",
    "run",
    "validate_project",
]
