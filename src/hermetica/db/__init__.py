"""Registry database: store paths and run tracking (registry.db)."""

from hermetica.db.engine import (
    get_registry_engine,
    get_registry_session,
    init_registry,
    reset_engines,
)
from hermetica.db.models import RegistryBase, Run, StorePath
from hermetica.db.registry import (
    complete_run,
    fail_run,
    forget_store_path,
    list_store_paths,
    recent_runs,
    record_store_path,
    start_run,
)

__all__ = [
    "RegistryBase",
    "Run",
    "StorePath",
    "complete_run",
    "fail_run",
    "forget_store_path",
    "get_registry_engine",
    "get_registry_session",
    "init_registry",
    "list_store_paths",
    "recent_runs",
    "record_store_path",
    "reset_engines",
    "start_run",
]
