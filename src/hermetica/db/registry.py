"""Registry operations — store paths and run tracking."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from hermetica.core.models import Artifact
from hermetica.db.models import Run, StorePath


def record_store_path(session: Session, artifact: Artifact) -> StorePath:
    """Insert or refresh the row for an artifact.

    Args:
        session: Database session.
        artifact: Artifact that now exists in the store.

    Returns:
        The StorePath row.
    """
    row = session.get(StorePath, artifact.fingerprint)
    if row is None:
        row = StorePath(fingerprint=artifact.fingerprint)
        session.add(row)
    row.pname = artifact.pname
    row.version = artifact.version
    row.path = str(artifact.path)
    row.tree_hash = artifact.tree_hash
    return row


def list_store_paths(session: Session, pname: str | None = None) -> list[StorePath]:
    stmt = select(StorePath).order_by(StorePath.created_at.desc(), StorePath.pname)
    if pname is not None:
        stmt = stmt.where(StorePath.pname == pname)
    return list(session.scalars(stmt))


def forget_store_path(session: Session, fingerprint: str) -> None:
    session.execute(delete(StorePath).where(StorePath.fingerprint == fingerprint))


def start_run(session: Session, project: str, target: str) -> Run:
    """Create a run in status 'running'.

    Args:
        session: Database session.
        project: Project name (pname).
        target: Final stage of the run.

    Returns:
        Created Run.
    """
    run = Run(
        id=str(uuid4()),
        project=project,
        target=target,
        status="running",
        started_at=datetime.now(),
    )
    run.stats = {}
    session.add(run)
    return run


def complete_run(
    session: Session,
    run_id: str,
    stats: dict[str, Any],
    fingerprint: str | None = None,
) -> Run:
    """Mark a run as completed."""
    run = _get_run(session, run_id)
    run.status = "completed"
    run.completed_at = datetime.now()
    run.fingerprint = fingerprint
    run.stats = stats
    return run


def fail_run(session: Session, run_id: str, error: str, stats: dict[str, Any] | None = None) -> Run:
    """Mark a run as failed."""
    run = _get_run(session, run_id)
    run.status = "failed"
    run.completed_at = datetime.now()
    run.error_message = error
    if stats is not None:
        run.stats = stats
    return run


def recent_runs(session: Session, limit: int = 10) -> list[Run]:
    stmt = select(Run).order_by(Run.started_at.desc()).limit(limit)
    return list(session.scalars(stmt))


def _get_run(session: Session, run_id: str) -> Run:
    run = session.get(Run, run_id)
    if run is None:
        msg = f"Run {run_id} not found"
        raise ValueError(msg)
    return run
