"""
Reading Indexer Configuration

Pydantic Settings for the Reading Indexer service.
Loads from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import Field

from ..core.constants import DEFAULT_AGGREGATOR_WORKERS, DEFAULT_STORE_WORKERS


class Settings(BaseSettings):
    """Reading Indexer service configuration."""

    # Service identity
    service_name: str = Field(default="reading-indexer", description="Service name for logging/metrics")
    environment: Literal["local", "staging", "production"] = Field(default="local")
    service_version: str = Field(default="0.1.0")
    log_level: str = Field(default="INFO")

    # Storage
    cache_path: Path = Field(
        default=Path("./cache"),
        description="Base directory for aggregator output and consumer status when a job gives no path",
    )
    jobs_file: Path = Field(default=Path("jobs.json"), description="JSON file defining the scheduled jobs")

    # Database
    database_url: str = Field(default="", description="PostgreSQL connection string (persisters only)")

    # Worker pools
    store_workers: int = Field(default=DEFAULT_STORE_WORKERS, ge=1, description="Threads per store for file loads")
    aggregator_workers: int = Field(default=DEFAULT_AGGREGATOR_WORKERS, ge=1, description="Default threads per aggregator")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        extra = "ignore"

    def resolve_path(self, path: Path) -> Path:
        """Absolute paths as given, relative ones below cache_path."""
        return path if path.is_absolute() else self.cache_path / path


# Global settings instance
settings = Settings()
