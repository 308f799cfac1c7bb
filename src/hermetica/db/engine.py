"""Database engine setup for the Hermetica registry.

The registry (registry.db) records store paths and pipeline runs. It is an
index over the store, never the source of truth: artifacts carry their own
metadata files.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

if TYPE_CHECKING:
    from hermetica.config import Settings

# Lazy engine initialization - engine created on first use
_registry_engine: Engine | None = None
_registry_session_factory: sessionmaker[Session] | None = None


def _enable_foreign_keys(dbapi_conn: object, connection_record: object) -> None:
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _create_engine_for_db(db_path: Path) -> Engine:
    """Create a SQLite engine with proper configuration."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        pool_pre_ping=True,
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def get_registry_engine(settings: "Settings | None" = None) -> Engine:
    """Get or create the registry engine."""
    global _registry_engine
    if _registry_engine is None:
        if settings is None:
            from hermetica.config import get_settings

            settings = get_settings()
        settings.ensure_storage_dir()
        _registry_engine = _create_engine_for_db(settings.registry_db_path)
    return _registry_engine


def get_registry_session_factory(settings: "Settings | None" = None) -> sessionmaker[Session]:
    """Get or create the registry session factory."""
    global _registry_session_factory
    if _registry_session_factory is None:
        engine = get_registry_engine(settings)
        _registry_session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return _registry_session_factory


@contextmanager
def get_registry_session(settings: "Settings | None" = None) -> Generator[Session, None, None]:
    """Yield a registry database session."""
    factory = get_registry_session_factory(settings)
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_registry(settings: "Settings | None" = None) -> None:
    """Create registry tables if they don't exist."""
    from hermetica.db.models import RegistryBase

    RegistryBase.metadata.create_all(get_registry_engine(settings))


def reset_engines() -> None:
    """Reset engine caches (useful for testing)."""
    global _registry_engine, _registry_session_factory

    if _registry_engine is not None:
        _registry_engine.dispose()
        _registry_engine = None
    _registry_session_factory = None
