"""Structured logging and verbosity levels for Hermetica runs."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any


class Verbosity(IntEnum):
    """Verbosity levels for console output."""

    DEFAULT = 0   # Summary only
    VERBOSE = 1   # + per-stage progress
    DEBUG = 2     # + every external command


@dataclass
class StageLog:
    """Per-stage run statistics."""

    name: str
    status: str = "pending"  # pending, built, cached, failed
    commands: int = 0
    warnings: list[str] = field(default_factory=list)
    time_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "commands": self.commands,
            "warnings": list(self.warnings),
            "time_seconds": self.time_seconds,
        }


@dataclass
class RunLog:
    """Structured log of a complete pipeline run.

    The dict format is::

        {
            "run_id": "20261019T101500Z",
            "stages": {
                "resolve": {"status": "cached", "commands": 0, ...},
                "build": {"status": "built", "commands": 3, ...},
                ...
            },
            "total_time": 41.2,
            "total_commands": 3,
            "built": 2,
            "cached": 1,
        }
    """

    run_id: str = ""
    stages: dict[str, StageLog] = field(default_factory=dict)
    total_time: float = 0.0
    total_commands: int = 0
    built: int = 0
    cached: int = 0

    def get_or_create_stage(self, name: str) -> StageLog:
        """Get existing stage log or create a new one."""
        if name not in self.stages:
            self.stages[name] = StageLog(name=name)
        return self.stages[name]

    def finalize(self) -> None:
        """Compute totals from stage data."""
        self.total_commands = sum(s.commands for s in self.stages.values())
        self.built = sum(1 for s in self.stages.values() if s.status == "built")
        self.cached = sum(1 for s in self.stages.values() if s.status == "cached")

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stages": {name: stage.to_dict() for name, stage in self.stages.items()},
            "total_time": self.total_time,
            "total_commands": self.total_commands,
            "built": self.built,
            "cached": self.cached,
        }


class HermeticaLogger:
    """Structured logger for Hermetica runs.

    Writes JSONL log files to logs_dir and optionally emits console output
    via Rich based on verbosity level.
    """

    def __init__(
        self,
        verbosity: Verbosity = Verbosity.DEFAULT,
        logs_dir: Path | None = None,
    ):
        self.verbosity = verbosity
        self.logs_dir = logs_dir
        self.run_log = RunLog(
            run_id=datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ"),
        )
        self._log_file = None
        self._log_path: Path | None = None
        self._stage_start: dict[str, float] = {}

        if logs_dir is not None:
            logs_dir.mkdir(parents=True, exist_ok=True)
            self._log_path = logs_dir / f"{self.run_log.run_id}.jsonl"
            self._log_file = open(self._log_path, "a")

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def _write_event(self, event: dict[str, Any]) -> None:
        """Write a JSON event to the JSONL log file."""
        if self._log_file is not None:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
            self._log_file.write(json.dumps(event) + "\n")
            self._log_file.flush()

    def _console_print(self, message: str, min_verbosity: Verbosity) -> None:
        """Print to console if verbosity is high enough."""
        if self.verbosity >= min_verbosity:
            from rich.console import Console

            Console(stderr=True).print(message)

    # -- Stage events --

    def stage_start(self, stage: str) -> None:
        self._stage_start[stage] = time.time()
        self.run_log.get_or_create_stage(stage)
        self._write_event({"event": "stage_start", "stage": stage})
        self._console_print(f"  [bold]Stage:[/bold] {stage}", Verbosity.VERBOSE)

    def stage_finish(self, stage: str, detail: str = "") -> None:
        elapsed = time.time() - self._stage_start.pop(stage, time.time())
        log = self.run_log.get_or_create_stage(stage)
        log.status = "built"
        log.time_seconds = elapsed
        self._write_event({
            "event": "stage_finish",
            "stage": stage,
            "detail": detail,
            "time_seconds": round(elapsed, 3),
        })
        suffix = f" {detail}" if detail else ""
        self._console_print(
            f"    [green]+[/green] {stage}{suffix} ({elapsed:.1f}s)",
            Verbosity.VERBOSE,
        )

    def stage_cached(self, stage: str, detail: str = "") -> None:
        self._stage_start.pop(stage, None)
        log = self.run_log.get_or_create_stage(stage)
        log.status = "cached"
        self._write_event({"event": "stage_cached", "stage": stage, "detail": detail})
        self._console_print(f"    [cyan]=[/cyan] {stage} (cached)", Verbosity.VERBOSE)

    def stage_failed(self, stage: str, error: str) -> None:
        elapsed = time.time() - self._stage_start.pop(stage, time.time())
        log = self.run_log.get_or_create_stage(stage)
        log.status = "failed"
        log.time_seconds = elapsed
        self._write_event({"event": "stage_failed", "stage": stage, "error": error})
        self._console_print(f"    [red]x[/red] {stage}: {error}", Verbosity.VERBOSE)

    # -- Command and warning events --

    def command(self, stage: str, argv: list[str], returncode: int) -> None:
        """Record an external command invocation."""
        self.run_log.get_or_create_stage(stage).commands += 1
        self._write_event({
            "event": "command",
            "stage": stage,
            "argv": list(argv),
            "returncode": returncode,
        })
        self._console_print(
            f"        [dim]$ {' '.join(argv)} -> {returncode}[/dim]",
            Verbosity.DEBUG,
        )

    def warning(self, stage: str, message: str) -> None:
        """Record a tolerated, non-fatal condition."""
        self.run_log.get_or_create_stage(stage).warnings.append(message)
        self._write_event({"event": "warning", "stage": stage, "message": message})
        self._console_print(f"    [yellow]![/yellow] {message}", Verbosity.VERBOSE)

    def rebuild(self, reasons: list[str]) -> None:
        """Record why no stored artifact could be reused."""
        self._write_event({"event": "rebuild", "reasons": list(reasons)})
        self._console_print(f"  [yellow]rebuild:[/yellow] {', '.join(reasons)}", Verbosity.VERBOSE)

    # -- Run lifecycle --

    def run_start(self, project_name: str, target: str, stage_count: int) -> None:
        self._write_event({
            "event": "run_start",
            "project": project_name,
            "target": target,
            "stage_count": stage_count,
        })

    def run_finish(self, total_time: float, status: str = "completed") -> None:
        """Log the completion of a run and finalize stats."""
        self.run_log.total_time = total_time
        self.run_log.finalize()
        self._write_event({
            "event": "run_finish",
            "status": status,
            "total_time": round(total_time, 3),
            "total_commands": self.run_log.total_commands,
            "built": self.run_log.built,
            "cached": self.run_log.cached,
        })
        self.close()

    def close(self) -> None:
        """Close the log file if open."""
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None
