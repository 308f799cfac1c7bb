"""Registry database models.

- StorePath: one row per artifact placed in the store
- Run: execution tracking for pipeline runs
"""

import json
from datetime import datetime
from typing import Any, ClassVar
from uuid import uuid4

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class RegistryBase(DeclarativeBase):
    """Base class for registry models."""

    type_annotation_map: ClassVar[dict[type, Any]] = {}


class StorePath(RegistryBase):
    """An artifact directory in the store, keyed by derivation fingerprint."""

    __tablename__ = "store_paths"

    fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)
    pname: Mapped[str] = mapped_column(String(256), nullable=False)
    version: Mapped[str] = mapped_column(String(128), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    tree_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("idx_store_paths_pname", "pname"),)


class Run(RegistryBase):
    """Execution tracking for pipeline runs."""

    __tablename__ = "runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    project: Mapped[str] = mapped_column(String(256), nullable=False)
    target: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="running"
    )  # running/completed/failed
    fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stats_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    @property
    def stats(self) -> dict[str, Any]:
        """Get deserialized run statistics."""
        return json.loads(self.stats_json)  # type: ignore[no-any-return]

    @stats.setter
    def stats(self, value: dict[str, Any]) -> None:
        """Set serialized run statistics."""
        self.stats_json = json.dumps(value)

    __table_args__ = (Index("idx_runs_project", "project"),)
