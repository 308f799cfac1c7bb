"""Configuration settings for Hermetica.

Storage layout under ``storage_dir``:
- store/: immutable artifacts, one directory per derivation
- cache/: offline dependency caches, one directory per lockfile digest
- logs/: JSONL run logs
- registry.db: store paths and run tracking
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HERMETICA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage directory (default: .hermetica in current directory)
    storage_dir: Path = Field(default=Path(".hermetica"))

    # Dependency fetching
    fetch_concurrency: int = 4
    fetch_timeout: float = 60.0

    # Verification
    smoke_timeout: float = 5.0
    vuln_limit: int = 100
    sbom_backend: str = "native"  # native | syft
    scan_backend: str = "grype"  # grype | osv
    osv_api_url: str = "https://api.osv.dev/v1/querybatch"
    verify_concurrency: int = 3
    gnupg_home: Path | None = None

    @property
    def store_dir(self) -> Path:
        return self.storage_dir / "store"

    @property
    def cache_dir(self) -> Path:
        return self.storage_dir / "cache"

    @property
    def logs_dir(self) -> Path:
        return self.storage_dir / "logs"

    @property
    def images_dir(self) -> Path:
        return self.storage_dir / "images"

    @property
    def registry_db_path(self) -> Path:
        return self.storage_dir / "registry.db"

    @property
    def registry_db_url(self) -> str:
        """SQLAlchemy URL for the registry database."""
        return f"sqlite:///{self.registry_db_path}"

    def ensure_storage_dir(self) -> None:
        """Create storage directory if it doesn't exist."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (useful for testing)."""
    global _settings
    _settings = None
